"""
Tests for bundle generation and hashed bundle output
"""

import json
import pytest
import shutil
import subprocess
import tempfile
from pathlib import Path

from ..generator import (
    BundleOutput, ClosureBundle, EsmBundle, normalize_module_id, select_strategy, write_bundle,
)
from ..graph import ModuleRecord
from .fakes import make_config


def record(root: Path, name: str, code: str, imports=None) -> ModuleRecord:
    imports = {spec: root / target for spec, target in (imports or {}).items()}
    return ModuleRecord(
        path=root / name,
        code=code,
        dependencies=list(dict.fromkeys(imports.values())),
        imports=imports,
    )


class TestModuleIds:

    def test_relative_with_extension_stripped(self):
        assert normalize_module_id("/app/src/lib/util.ts", "/app/src") == "./lib/util"
        assert normalize_module_id("/app/src/main.jsx", "/app/src") == "./main"

    def test_outside_entry_directory(self):
        assert normalize_module_id("/app/shared/x.js", "/app/src") == "../shared/x"

    def test_non_script_extension_kept(self):
        assert normalize_module_id("/app/src/data.json", "/app/src") == "./data.json"


class TestClosureBundle:

    def setup_method(self):
        self.root = Path(tempfile.mkdtemp()).resolve()
        self.entry = self.root / "main.js"

    def teardown_method(self):
        shutil.rmtree(self.root)

    def modules(self):
        return [
            record(self.root, "main.js", "const a = require('./lib/a');\nconsole.log(a.value);",
                   {"./lib/a": "lib/a.js"}),
            record(self.root, "lib/a.js", "exports.value = require(\"../b\").value + 1;",
                   {"../b": "b.js"}),
            record(self.root, "b.js", "exports.value = 41;"),
        ]

    def test_registers_each_module_once(self):
        code = ClosureBundle().generate(self.modules(), self.entry).code

        assert code.count('modules["./main"] =') == 1
        assert code.count('modules["./lib/a"] =') == 1
        assert code.count('modules["./b"] =') == 1
        assert code.rstrip().endswith("})();")
        assert '__kiln_require("./main");' in code

    def test_requires_rewritten_to_entry_relative_ids(self):
        code = ClosureBundle().generate(self.modules(), self.entry).code

        assert 'require("./lib/a")' in code
        assert 'require("./b")' in code
        assert "require('../b')" not in code
        assert 'require("../b")' not in code

    def test_unrecorded_requires_untouched(self):
        modules = [record(self.root, "main.js", "const React = require('react');")]
        code = ClosureBundle().generate(modules, self.entry).code

        assert "require('react')" in code

    def test_entry_source_map_is_carried(self):
        modules = self.modules()
        modules[0].source_map = {"version": 3, "mappings": ""}

        output = ClosureBundle().generate(modules, self.entry)

        assert output.source_map == {"version": 3, "mappings": ""}
        assert output.import_map is None

    def test_runtime_caches_module_before_running_factory(self):
        """Without node: the registry returns the cached module and fills the cache before evaluation"""
        code = ClosureBundle().generate(self.modules(), self.entry).code
        runtime = code[code.index("function __kiln_require"):code.index("// Module:")]

        cache_hit = runtime.index("if (entry.cache) return entry.cache.exports;")
        cache_fill = runtime.index("entry.cache = module;")
        evaluation = runtime.index("entry.factory.call(")

        assert cache_hit < cache_fill < evaluation
        assert runtime.count("entry.factory.call(") == 1
        assert code.count("__kiln_require(") == 2

    @pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")
    def test_circular_modules_evaluate_once(self):
        """Each factory runs once; a cycle sees the partially filled exports"""
        modules = [
            record(self.root, "main.js",
                   "globalThis.log = [];\nconst a = require('./a');\nglobalThis.log.push('main:' + a.done);",
                   {"./a": "a.js"}),
            record(self.root, "a.js",
                   "globalThis.log.push('a');\nexports.done = false;\nconst b = require('./b');\n"
                   "exports.done = true;\nglobalThis.log.push('a saw b:' + b.done);",
                   {"./b": "b.js"}),
            record(self.root, "b.js",
                   "globalThis.log.push('b');\nconst a = require('./a');\n"
                   "globalThis.log.push('b saw a:' + a.done);\nexports.done = true;",
                   {"./a": "a.js"}),
        ]
        code = ClosureBundle().generate(modules, self.entry).code
        script = code + "\nconsole.log(JSON.stringify(globalThis.log));\n"

        result = subprocess.run(["node", "-e", script], capture_output=True, text=True, timeout=30)

        assert result.returncode == 0, result.stderr
        assert json.loads(result.stdout) == ["a", "b", "b saw a:false", "a saw b:true", "main:true"]


class TestEsmBundle:

    def setup_method(self):
        self.root = Path(tempfile.mkdtemp()).resolve()
        self.entry = self.root / "main.js"

    def teardown_method(self):
        shutil.rmtree(self.root)

    def test_dependencies_emitted_first(self):
        modules = [
            record(self.root, "main.js", "const u = require('./util');", {"./util": "util.js"}),
            record(self.root, "util.js", "exports.x = 1;"),
        ]
        output = EsmBundle().generate(modules, self.entry)

        assert output.code.index("// ./util") < output.code.index("// ./main")
        assert output.code.rstrip().endswith("export default __kiln1_main;")
        assert "const u = __kiln0_util;" in output.code

    def test_import_map_lists_every_module(self):
        modules = [
            record(self.root, "main.js", "require('./util');", {"./util": "util.js"}),
            record(self.root, "util.js", ""),
        ]
        output = EsmBundle().generate(modules, self.entry)

        assert output.import_map == {
            "imports": {
                "./util": "./main.js#__kiln0_util",
                "./main": "./main.js#__kiln1_main",
            }
        }

    def test_cycle_is_reported(self, caplog):
        modules = [
            record(self.root, "main.js", "require('./a');", {"./a": "a.js"}),
            record(self.root, "a.js", "require('./main');", {"./main": "main.js"}),
        ]
        with caplog.at_level("WARNING"):
            output = EsmBundle().generate(modules, self.entry)

        assert "circular imports" in caplog.text
        assert output.code.count("const __kiln") == 2

    def test_select_strategy(self):
        assert isinstance(select_strategy("esm"), EsmBundle)
        assert isinstance(select_strategy("iife"), ClosureBundle)


class TestWriteBundle:

    def setup_method(self):
        self.root = Path(tempfile.mkdtemp()).resolve()
        self.out_file = self.root / "dist" / "main.js"

    def teardown_method(self):
        shutil.rmtree(self.root)

    def test_hashed_name_depends_on_content(self):
        config = make_config(self.root)
        first = write_bundle(config, BundleOutput(code="one"), self.out_file)
        again = write_bundle(config, BundleOutput(code="one"), self.out_file)

        assert first.file_path == again.file_path
        assert first.file_path.name.startswith("main.")
        assert first.file_path.read_text() == "one"

    def test_previous_hashes_are_removed(self):
        config = make_config(self.root)
        old = write_bundle(config, BundleOutput(code="old"), self.out_file)
        new = write_bundle(config, BundleOutput(code="new"), self.out_file)

        assert not old.file_path.exists()
        assert new.file_path.exists()
        assert [p.name for p in self.out_file.parent.glob("main.*.js")] == [new.file_path.name]

    def test_external_source_map(self):
        config = make_config(self.root, sourcemap="external")
        written = write_bundle(
            config, BundleOutput(code="x", source_map={"version": 3}), self.out_file
        )

        assert written.map_path == written.file_path.with_name(f"{written.file_path.name}.map")
        assert json.loads(written.map_path.read_text()) == {"version": 3}
        assert written.file_path.read_text().endswith(f"//# sourceMappingURL={written.map_path.name}")

    def test_inline_source_map(self):
        config = make_config(self.root, sourcemap="inline")
        written = write_bundle(
            config, BundleOutput(code="x", source_map={"version": 3}), self.out_file
        )

        assert written.map_path is None
        assert "sourceMappingURL=data:application/json;base64," in written.file_path.read_text()

    def test_no_source_map_when_disabled(self):
        config = make_config(self.root)
        written = write_bundle(
            config, BundleOutput(code="x", source_map={"version": 3}), self.out_file
        )

        assert written.map_path is None
        assert written.file_path.read_text() == "x"

    def test_import_map_written_once(self):
        config = make_config(self.root, format="esm")
        write_bundle(config, BundleOutput(code="a", import_map={"imports": {"./a": "x"}}), self.out_file)
        written = write_bundle(
            config, BundleOutput(code="b", import_map={"imports": {"./b": "y"}}), self.out_file
        )

        maps = list(self.out_file.parent.glob("import-map.*.json"))
        assert maps == [written.import_map_path]
        assert json.loads(maps[0].read_text()) == {"imports": {"./b": "y"}}
