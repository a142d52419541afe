#!/usr/bin/env python3
"""Draw who-works-where graphs from ``assignments.csv``.

Workflows and users are the two node kinds; an edge joins a user to every
workflow they hold a slot in and lists the roles. Edges where the user got the
slot through a user alias are drawn dashed, workflows with unassigned slots in
red.
"""
from __future__ import annotations

import argparse
import csv
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Tuple

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.lines import Line2D
import networkx as nx

LAYOUT_CHOICES = ("bipartite", "spring")

WORKFLOW_COLOR = "#4c72b0"
ERROR_COLOR = "#c44e52"
USER_COLOR = "#55a868"


def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Visualize workflow allocations")
    ap.add_argument("--assignments", default="assignments.csv", type=Path, help="CSV written by run_allocation.py")
    ap.add_argument("--out-dir", default=Path("allocation_graphs"), type=Path, help="Directory for generated images")
    ap.add_argument("--out-prefix", default="allocation_graph", type=str, help="Filename prefix (layout name is appended)")
    ap.add_argument("--layouts", nargs="+", default=list(LAYOUT_CHOICES), choices=LAYOUT_CHOICES)
    ap.add_argument("--dpi", type=int, default=200, help="Output DPI")
    return ap.parse_args()


def load_assignments(path: Path) -> List[Dict[str, str]]:
    if not path.exists():
        raise SystemExit(f"Missing file: {path}")
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        return list(csv.DictReader(handle))


def workflow_node(workflow_id: str) -> str:
    return f"workflow:{workflow_id}"


def user_node(user: str) -> str:
    return f"user:{user}"


def build_graph(rows: List[Dict[str, str]]) -> nx.Graph:
    graph = nx.Graph()
    holders: Dict[Tuple[str, str], List[str]] = defaultdict(list)  # (workflow, role name) -> users
    for row in rows:
        user = (row.get("AssignedTo") or "").strip()
        if user:
            holders[(row["Workflow"], row["Role"])].append(user)

    for row in rows:
        wid = row["Workflow"]
        wnode = workflow_node(wid)
        if wnode not in graph:
            graph.add_node(wnode, kind="workflow", label=wid, unassigned=0)
        user = (row.get("AssignedTo") or "").strip()
        if not user:
            graph.nodes[wnode]["unassigned"] += 1
            continue

        unode = user_node(user)
        if unode not in graph:
            graph.add_node(unode, kind="user", label=user)
        alias_of = (row.get("AliasOf") or "").strip()
        via_alias = bool(alias_of) and user in holders.get((wid, alias_of), [])
        if graph.has_edge(wnode, unode):
            edge = graph.edges[wnode, unode]
            edge["roles"].append(row["Role"])
            edge["alias"] = edge["alias"] or via_alias
        else:
            graph.add_edge(wnode, unode, roles=[row["Role"]], alias=via_alias)

    if not graph.nodes:
        raise RuntimeError("No assignments to visualize")
    return graph


def user_loads(graph: nx.Graph) -> Dict[str, int]:
    """Number of workflows each user takes part in."""
    return {
        graph.nodes[n]["label"]: graph.degree(n)
        for n in graph.nodes
        if graph.nodes[n]["kind"] == "user"
    }


def _layout_bipartite(graph: nx.Graph) -> Dict[str, Tuple[float, float]]:
    workflows = [n for n in graph.nodes if graph.nodes[n]["kind"] == "workflow"]
    return nx.bipartite_layout(graph, workflows)


def _layout_spring(graph: nx.Graph) -> Dict[str, Tuple[float, float]]:
    if len(graph.nodes) == 1:
        return {next(iter(graph.nodes)): (0.0, 0.0)}
    return nx.spring_layout(graph, seed=42)


LAYOUT_FNS = {
    "bipartite": _layout_bipartite,
    "spring": _layout_spring,
}


def _node_colors(graph: nx.Graph) -> List[str]:
    colors = []
    for n in graph.nodes:
        meta = graph.nodes[n]
        if meta["kind"] == "user":
            colors.append(USER_COLOR)
        else:
            colors.append(ERROR_COLOR if meta.get("unassigned") else WORKFLOW_COLOR)
    return colors


def render_graph(graph: nx.Graph, out_path: Path, layout_name: str, *, dpi: int) -> Path:
    positions = LAYOUT_FNS[layout_name](graph)
    fig, ax = plt.subplots(figsize=(13, 9))

    nx.draw_networkx_nodes(graph, positions, node_color=_node_colors(graph), node_size=420, ax=ax)
    nx.draw_networkx_labels(graph, positions, labels={n: graph.nodes[n]["label"] for n in graph.nodes}, font_size=7, ax=ax)

    plain = [(u, v) for u, v, d in graph.edges(data=True) if not d.get("alias")]
    alias = [(u, v) for u, v, d in graph.edges(data=True) if d.get("alias")]
    nx.draw_networkx_edges(graph, positions, edgelist=plain, edge_color="#555555", ax=ax)
    nx.draw_networkx_edges(graph, positions, edgelist=alias, edge_color="#8172b2", style="dashed", ax=ax)
    edge_labels = {(u, v): ", ".join(d["roles"]) for u, v, d in graph.edges(data=True)}
    nx.draw_networkx_edge_labels(graph, positions, edge_labels=edge_labels, font_size=6, ax=ax)

    handles = [
        Line2D([0], [0], marker="o", color="w", markerfacecolor=WORKFLOW_COLOR, markersize=9, label="workflow"),
        Line2D([0], [0], marker="o", color="w", markerfacecolor=ERROR_COLOR, markersize=9, label="workflow with unassigned slots"),
        Line2D([0], [0], marker="o", color="w", markerfacecolor=USER_COLOR, markersize=9, label="user"),
        Line2D([0], [0], color="#8172b2", linestyle="dashed", label="user alias"),
    ]
    ax.legend(handles=handles, loc="upper right", fontsize=8)
    ax.set_title(f"Workflow allocation ({layout_name} layout)")
    ax.set_axis_off()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)
    return out_path


def main() -> None:
    args = parse_args()
    graph = build_graph(load_assignments(args.assignments))
    for layout in args.layouts:
        out_path = render_graph(graph, args.out_dir / f"{args.out_prefix}_{layout}.png", layout, dpi=args.dpi)
        print(f"Wrote {out_path}")

    loads = user_loads(graph)
    if loads:
        busiest = max(loads.values())
        print(f"Users: {len(loads)} | max workflows per user: {busiest}")


if __name__ == "__main__":
    main()
