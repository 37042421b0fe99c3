"""
Kiln core: the bundler and build pipeline
"""
