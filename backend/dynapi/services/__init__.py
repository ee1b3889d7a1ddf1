"""
Services Package

Import services from their modules; registries and the dispatcher depend on
one another and are assembled by ``dynapi.runtime``.
"""
