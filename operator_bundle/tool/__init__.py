"""Command line tool for generating operator bundles."""
