"""
User automation rules: draft validation and the rule engine.

Import from the submodules directly; the engine depends on the storage
layer, which itself imports ``rules.validation``.
"""
