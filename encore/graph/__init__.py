"""
Graph — nodnod computation graphs.

    from encore import graph as G

    @G.node
    class FetchCached:
        @classmethod
        async def __compose__(cls, spec: Spec) -> FetchCached:
            return cls(await spec.store.get_cached(spec.key))

    node = await G.run(FetchCached).inject(spec)
"""

from nodnod import scalar_node as node

from encore.graph._run import (
    TypedScope,
    Run,
    run,
)
from encore.graph._compiled import (
    Compiled,
    graph,
)

__all__ = (
    "node",
    "TypedScope",
    "run",
    "Run",
    "graph",
    "Compiled",
)
