"""Command line interface for limmapy."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from limmapy.config import PipelineConfig, load_config
from limmapy.errors import ConfigurationError, DataError
from limmapy.io import (read_annotation, read_contrasts, read_counts, read_samples,
                        write_gene_list, write_top_tables)
from limmapy.pipeline import run_pipeline

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Empirical Bayes differential expression for RNA-seq counts."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@cli.command("run")
@click.argument("counts", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("samples", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("contrasts", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--factors", type=str, default=None,
              help="Comma-separated sample columns defining groups, in join order.")
@click.option("--out", "out_dir", type=click.Path(file_okay=False, path_type=Path),
              required=True, help="Directory for result tables.")
@click.option("--config", "config_path",
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="JSON file with pipeline settings.")
@click.option("--annotation", "annotation_path",
              type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None,
              help="Delimited table with SYMBOL, ENTREZID and GENENAME columns.")
@click.option("--lfc", type=float, default=None, help="Fold-change threshold for gene selection.")
@click.option("--p-value", "p_value", type=float, default=None,
              help="Adjusted p-value threshold.")
@click.option("--jobs", type=click.IntRange(1, None), default=None,
              help="Worker processes for weighted model fits.")
@click.option("--no-voom", is_flag=True, help="Fit unweighted log-CPM values.")
def run(counts: Path, samples: Path, contrasts: Path, factors: Optional[str], out_dir: Path,
        config_path: Optional[Path], annotation_path: Optional[Path], lfc: Optional[float],
        p_value: Optional[float], jobs: Optional[int], no_voom: bool) -> None:
    """Run filtering, normalization, model fitting and gene selection."""
    try:
        config = load_config(config_path) if config_path else PipelineConfig()
        config = config.replace(
            factors=[f.strip() for f in factors.split(",") if f.strip()] if factors else None,
            lfc=lfc, p_value=p_value, n_jobs=jobs,
            use_voom=False if no_voom else None,
        )
        count_table, genes = read_counts(counts)
        sample_table = read_samples(samples)
        contrast_defs = read_contrasts(contrasts)
        annotation = read_annotation(annotation_path) if annotation_path else None

        logger.debug("Configuration: %s", config.to_dict())
        result = run_pipeline(count_table, sample_table, contrast_defs, config=config,
                              annotation=annotation, genes=genes)
        paths = write_top_tables(result.fit, out_dir, p_value=config.p_value,
                                 adjust_method=config.adjust_method)
    except ConfigurationError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)
    except DataError as exc:
        click.echo(f"Data error: {exc}", err=True)
        sys.exit(1)

    for name, path in paths.items():
        click.echo(f"{name}: {path}")
    result.tests.to_csv(out_dir / "decide_tests.tsv", sep="\t")
    result.summary().to_csv(out_dir / "summary.tsv", sep="\t")
    write_gene_list(result.selected, out_dir / "selected_genes.txt")
    click.echo(f"Selected {len(result.selected)} genes -> {out_dir / 'selected_genes.txt'}")


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
