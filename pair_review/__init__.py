"""Analysis engine for running AI reviewer CLIs against code changes."""
