"""CLI entry point for kbcluster."""

import asyncio
import copy
import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import DEFAULT_CONFIG, ClusteringOptions, load_config

console = Console()


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Knowledge clusters - group knowledge chunks by meaning and track coverage."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _get_config(ctx) -> dict:
    try:
        return load_config(ctx.obj.get("config_path"))
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e


def _load_chunks(path: str) -> list:
    from .ingest.loader import load_chunks

    try:
        return load_chunks(path)
    except (ValueError, json.JSONDecodeError) as e:
        raise click.ClickException(str(e)) from e


def _get_tracker(config: dict, chunks: list):
    from .storage.tiered import TieredPersistenceStore
    from .tracking.progress import KnowledgeCatalog, KnowledgeProgressTracker

    catalog = KnowledgeCatalog.from_chunks(chunks, minimum_totals=config["tracking"].get("minimum_totals"))
    return KnowledgeProgressTracker(catalog, store=TieredPersistenceStore.from_config(config))


@cli.command()
@click.option("--path", default=None, help="Custom home directory")
@click.pass_context
def init(ctx, path):
    """Create the home directory and a default config.yaml."""
    import yaml

    home = Path(path).expanduser().resolve() if path else Path(DEFAULT_CONFIG["home"]).expanduser()
    console.print(f"[bold green]Initializing kbcluster at {home}[/]")

    for d in ["state", "backups", "chroma"]:
        (home / d).mkdir(parents=True, exist_ok=True)

    config_file = home / "config.yaml"
    if config_file.exists():
        console.print(f"  [dim]Config already exists: {config_file}[/]")
    else:
        cfg = copy.deepcopy(DEFAULT_CONFIG)
        cfg["home"] = str(home)
        header = (
            "# Storage tiers are tried in order; the first is the primary.\n"
            "# Leave dbscan_epsilon empty to use 1 - similarity_threshold.\n\n"
        )
        config_file.write_text(header + yaml.dump(cfg, default_flow_style=False, sort_keys=False))
        console.print(f"  Created config: {config_file}")

    console.print("[bold green]✓ Initialized![/]")
    console.print("  Run: kbc cluster chunks.json --output clusters.json")


@cli.command()
@click.argument("chunks_path", metavar="CHUNKS", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", required=True, type=click.Path(dir_okay=False), help="Where to write the chunks")
@click.pass_context
def embed(ctx, chunks_path, output):
    """Embed chunks that lack an embedding and write them back out."""
    from .clustering.engine import ClusteringEngine
    from .embeddings.provider import get_embedding_provider
    from .ingest.loader import dump_chunks

    config = _get_config(ctx)
    chunks = _load_chunks(chunks_path)
    engine = ClusteringEngine(get_embedding_provider(config), ClusteringOptions.from_config(config))

    console.print(f"[blue]Embedding {sum(not c.has_embedding for c in chunks)} chunk(s)...[/]")
    embedded, failed = asyncio.run(engine.ensure_embeddings(chunks))
    dump_chunks(embedded, output)

    console.print(f"[green]✓ Wrote {len(embedded)} chunk(s) to {output}[/]")
    if failed:
        console.print(f"  [yellow]{len(failed)} chunk(s) failed: {', '.join(c.id for c in failed)}[/]")


@cli.command()
@click.argument("chunks_path", metavar="CHUNKS", type=click.Path(exists=True, dir_okay=False))
@click.option("--algorithm", type=click.Choice(["hierarchical", "dbscan"]), default=None)
@click.option("--threshold", type=float, default=None, help="Similarity threshold")
@click.option("--linkage", type=click.Choice(["single", "complete", "average"]), default=None)
@click.option("--min-size", type=int, default=None, help="Minimum cluster size")
@click.option("--max-size", type=int, default=None, help="Maximum cluster size")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write clusters as JSON")
@click.pass_context
def cluster(ctx, chunks_path, algorithm, threshold, linkage, min_size, max_size, output):
    """Cluster a chunk catalog."""
    from .clustering.engine import ClusteringEngine

    config = _get_config(ctx)
    chunks = _load_chunks(chunks_path)

    overrides = {
        "algorithm": algorithm,
        "similarity_threshold": threshold,
        "linkage_type": linkage,
        "min_cluster_size": min_size,
        "max_cluster_size": max_size,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}

    provider = None
    if not all(c.has_embedding for c in chunks):
        from .embeddings.provider import get_embedding_provider
        provider = get_embedding_provider(config)

    try:
        engine = ClusteringEngine(provider, ClusteringOptions.from_config(config), **overrides)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    def report(event):
        logging.getLogger(__name__).debug(f"{event.stage}: {event.current}/{event.total} ({event.percentage}%)")

    console.print(f"[blue]Clustering {len(chunks)} chunk(s) ({engine.options.algorithm})...[/]")
    result = asyncio.run(engine.cluster(chunks, on_progress=report))

    if not result.clusters:
        console.print("[yellow]No clusters found.[/]")
    else:
        table = Table(title="Clusters")
        table.add_column("#", style="dim", width=3)
        table.add_column("Size", justify="right")
        table.add_column("Coherence", justify="right", style="green")
        table.add_column("Keywords", style="cyan", max_width=50)
        table.add_column("Members", max_width=40)
        for c in result.clusters:
            table.add_row(
                str(c.id),
                str(c.size),
                f"{c.coherence_score:.3f}",
                ", ".join(c.keywords) or "-",
                ", ".join(c.member_chunk_ids),
            )
        console.print(table)

    stats = result.statistics
    console.print(
        f"[green]✓ {stats.cluster_count} cluster(s), {stats.clustered_chunks} clustered, "
        f"{stats.unclustered} unclustered ({stats.processing_time_ms:.0f}ms)[/]"
    )
    if result.failed_chunk_ids:
        console.print(f"  [yellow]Failed to embed: {', '.join(result.failed_chunk_ids)}[/]")

    if output:
        Path(output).write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        console.print(f"  Wrote clusters: {output}")


@cli.command()
@click.argument("text")
@click.option("--clusters", "clusters_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--top-k", "-k", type=int, default=None, help="Number of clusters to return")
@click.pass_context
def query(ctx, text, clusters_path, top_k):
    """Rank stored clusters against a query."""
    from .embeddings.provider import get_embedding_provider
    from .models import ClusteringResult
    from .query.retriever import ClusterRetriever

    config = _get_config(ctx)
    try:
        data = ClusteringResult.from_dict(json.loads(Path(clusters_path).read_text(encoding="utf-8")))
    except (ValueError, KeyError, TypeError) as e:
        raise click.ClickException(f"Unreadable clusters file: {e}") from e
    if not data.clusters:
        console.print("[yellow]No clusters stored. Run 'kbc cluster' first.[/]")
        return

    retriever = ClusterRetriever(get_embedding_provider(config), top_k=config["retrieval"]["top_k"])
    hits = asyncio.run(retriever.query(text, data, top_k=top_k))

    table = Table(title=f"Clusters for: {text}")
    table.add_column("#", style="dim", width=3)
    table.add_column("Cluster", justify="right")
    table.add_column("Similarity", justify="right", style="green")
    table.add_column("Keywords", style="cyan", max_width=50)
    for i, hit in enumerate(hits, 1):
        table.add_row(str(i), str(hit.cluster.id), f"{hit.similarity:.3f}", ", ".join(hit.cluster.keywords) or "-")
    console.print(table)


@cli.command()
@click.argument("chunk_ids", nargs=-1, required=True)
@click.option("--chunks", "chunks_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def record(ctx, chunk_ids, chunks_path):
    """Record exposure to chunks and save progress."""
    config = _get_config(ctx)
    chunks = _load_chunks(chunks_path)
    by_id = {c.id: c for c in chunks}

    unknown = [cid for cid in chunk_ids if cid not in by_id]
    if unknown:
        raise click.ClickException(f"Unknown chunk id(s): {', '.join(unknown)}")

    tracker = _get_tracker(config, chunks)
    gained = tracker.record_chunks([by_id[cid] for cid in chunk_ids])
    if not gained:
        tracker.save()

    msg = "New knowledge recorded" if gained else "Nothing new"
    console.print(f"[green]✓ {msg}. Coverage: {tracker.coverage_percentage()}%[/]")


@cli.command()
@click.option("--chunks", "chunks_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--gaps/--no-gaps", default=True, help="List what has not been seen yet")
@click.pass_context
def progress(ctx, chunks_path, gaps):
    """Show knowledge coverage and gaps."""
    config = _get_config(ctx)
    tracker = _get_tracker(config, _load_chunks(chunks_path))
    b = tracker.breakdown()

    table = Table(title=f"Knowledge coverage: {b['overall']}%")
    table.add_column("Dimension", style="cyan")
    table.add_column("Known", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("%", justify="right", style="green")
    for dim, d in b["dimensions"].items():
        table.add_row(dim, str(d["known"]), str(d["total"]), f"{d['percentage']:.1f}")
    console.print(table)
    console.print(f"  Exposures: {b['exposure_count']}")

    if gaps:
        for dim, missing in tracker.gaps().items():
            if missing:
                preview = ", ".join(sorted(missing)[:10])
                more = f" (+{len(missing) - 10} more)" if len(missing) > 10 else ""
                console.print(f"  [bold]{dim}[/] not yet seen: {preview}{more}")


@cli.command()
@click.pass_context
def storage(ctx):
    """Show storage tier availability and backups."""
    from .storage.tiered import TieredPersistenceStore

    config = _get_config(ctx)
    info = TieredPersistenceStore.from_config(config).info()

    table = Table(title="Storage tiers")
    table.add_column("Tier", style="cyan")
    table.add_column("Available")
    table.add_column("Has state")
    for t in info["tiers"]:
        available = "[green]yes[/]" if t["available"] else f"[red]no[/] ({t.get('error', '')})"
        table.add_row(t["name"], available, "yes" if t["has_state"] else "no")
    console.print(table)

    console.print(f"\n[bold]Backups[/] (keeping {info['retention']}):")
    for key in info["backups"]:
        console.print(f"  • {key}")
    if not info["backups"]:
        console.print("  [dim]none[/]")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx, yes):
    """Delete persisted knowledge state from every tier and all backups."""
    from .storage.tiered import TieredPersistenceStore

    if not yes:
        click.confirm("Delete all saved knowledge progress?", abort=True)

    config = _get_config(ctx)
    TieredPersistenceStore.from_config(config).reset()
    console.print("[green]✓ Knowledge state reset[/]")


if __name__ == "__main__":
    cli()
