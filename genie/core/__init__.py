"""Invocation core: canonical models, provider adapters, retry and cost accounting.

Import from the submodules (``genie.core.llm``, ``genie.core.cost``,
``genie.core.providers``) so that SDKs load only when used.
"""
