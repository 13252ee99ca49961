"""Wiring package: deps builders that turn an ``AppContainer`` into service deps."""
