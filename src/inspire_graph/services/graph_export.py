"""引用グラフのnetworkx変換."""

from typing import Any

import networkx as nx  # type: ignore[import-untyped]

from inspire_graph.models.graph import GraphNode, MultiSeedGraphResult, OneHopResult, ReferenceEntry

# エッジの向きは「引用する側 -> 引用される側」


def _node_attrs(node: GraphNode) -> dict[str, Any]:
    return {
        "title": node.title,
        "year": node.year,
        "citation_count": node.citation_count,
        "local_item_id": node.local_item_id,
        "is_seed": True,
        "author_label": node.author_label,
    }


def _entry_attrs(entry: ReferenceEntry, side: str) -> dict[str, Any]:
    return {
        "title": entry.title,
        "year": entry.year,
        "citation_count": entry.citation_value if entry.citation_value >= 0 else None,
        "local_item_id": entry.local_item_id,
        "is_seed": False,
        "author_label": entry.author_text,
        "side": side,
        "connection_count": entry.connection_count or 1,
    }


def one_hop_to_networkx(result: OneHopResult) -> nx.DiGraph:
    """ワンホップ結果を有向グラフに変換."""
    G = nx.DiGraph()
    seed = result.center.recid
    G.add_node(seed, **_node_attrs(result.center))

    for entry in result.references:
        if entry.recid:
            G.add_node(entry.recid, **_entry_attrs(entry, "references"))
            G.add_edge(seed, entry.recid, relation_type="reference")
    for entry in result.cited_by:
        if entry.recid:
            if entry.recid not in G:
                G.add_node(entry.recid, **_entry_attrs(entry, "cited_by"))
            G.add_edge(entry.recid, seed, relation_type="citation")
    return G


def to_networkx(result: MultiSeedGraphResult) -> nx.DiGraph:
    """統合結果を有向グラフに変換."""
    G = nx.DiGraph()
    for node in result.seeds:
        G.add_node(node.recid, **_node_attrs(node))

    for entry in result.references:
        if entry.recid:
            G.add_node(entry.recid, **_entry_attrs(entry, "references"))
    for entry in result.cited_by:
        if entry.recid and entry.recid not in G:
            G.add_node(entry.recid, **_entry_attrs(entry, "cited_by"))

    for seed, view in result.by_seed.items():
        for recid in view.references:
            G.add_edge(seed, recid, relation_type="reference")
        for recid in view.cited_by:
            G.add_edge(recid, seed, relation_type="citation")
    for edge in result.seed_edges:
        G.add_edge(edge.source, edge.target, relation_type=edge.type)
    return G


def graph_summary(G: nx.DiGraph) -> dict[str, Any]:
    """グラフ統計."""
    seeds = [n for n, attrs in G.nodes(data=True) if attrs.get("is_seed")]
    return {
        "total_nodes": G.number_of_nodes(),
        "total_edges": G.number_of_edges(),
        "seeds": len(seeds),
        "seed_degrees": {
            seed: {"in_degree": G.in_degree(seed), "out_degree": G.out_degree(seed)} for seed in seeds
        },
    }
