"""
Command-line interface for the star matcher.
"""

import sys
from pathlib import Path
from typing import Optional, Tuple
import logging

import click
from tqdm import tqdm

from .config import Config
from .errors import MatchError
from .list_matcher import apply_transform
from .matcher import MatchResult, ReferenceSession, StarMatcher
from .star_list import load_transform, read_star_list, save_result, write_star_list


# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _load_config(
    config: Optional[Path],
    order: Optional[str],
    method: Optional[str],
    nbright: Optional[int],
    match_radius: Optional[float],
    scale: Optional[float],
    scale_range: Optional[Tuple[float, float]],
    rotation: Optional[float],
    rotation_tol: Optional[float],
    homography: Optional[str],
) -> Config:
    """Load the config file (if any) and apply command-line overrides."""
    cfg = Config.from_yaml(config) if config else Config()

    if order:
        cfg.fit.order = order
    if method:
        cfg.fit.method = method
    if nbright:
        cfg.triangles.nbright = nbright
    if match_radius:
        cfg.fit.match_radius = match_radius
    if scale:
        cfg.constraints.scale = scale
    if scale_range:
        cfg.constraints.min_scale, cfg.constraints.max_scale = scale_range
    if rotation is not None or rotation_tol is not None:
        cfg.constraints.rotation_deg = rotation
        cfg.constraints.rotation_tol_deg = rotation_tol
    if homography:
        cfg.homography.enabled = True
        cfg.homography.model = homography

    return cfg


def _print_result(result: MatchResult) -> None:
    transform = result.transform
    click.echo(click.style("✓ Match found!", fg="green"))
    click.echo(f"  Method: {result.method}")
    click.echo(f"  Order: {transform.order}")
    click.echo(f"  Matched stars: {result.matches.num_matched}")
    click.echo(f"  Unmatched: {len(result.matches.unmatched_a)} (A), {len(result.matches.unmatched_b)} (B)")
    click.echo(f"  Scale: {transform.scale:.6f}")
    click.echo(f"  Rotation: {transform.rotation:.3f}°")
    click.echo(f"  Translation: ({transform.translation[0]:.3f}, {transform.translation[1]:.3f})")
    click.echo(f"  Sigma: {transform.sigma:.4g} (x rms {transform.sigma_x:.4f}, y rms {transform.sigma_y:.4f})")
    if result.homography is not None:
        click.echo(f"  Homography ({result.homography.model}): {result.homography.inliers} inliers")


def _fail(message: str, verbose: bool) -> None:
    click.echo(click.style(f"✗ Error: {message}", fg="red"))
    if verbose:
        import traceback
        traceback.print_exc()
    sys.exit(1)


def _write_matched(prefix: Path, result: MatchResult) -> None:
    write_star_list(Path(f"{prefix}.A.txt"), result.matches.matched_a)
    write_star_list(Path(f"{prefix}.B.txt"), result.matches.matched_b)
    click.echo(f"  Matched lists: {prefix}.A.txt, {prefix}.B.txt")


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Star Matcher - match star lists and solve for the transform between them."""
    pass


def _match_options(func):
    options = [
        click.option("-c", "--config", type=click.Path(exists=True, path_type=Path),
                     help="Configuration YAML file"),
        click.option("--order", type=click.Choice(["linear", "quadratic", "cubic"]),
                     help="Polynomial order of the transform"),
        click.option("--method", type=click.Choice(["quick", "vote", "auto"]),
                     help="Triangle matching method"),
        click.option("--nbright", type=int, help="Brightest stars used for triangles"),
        click.option("--match-radius", type=float, help="Radius for matching stars"),
        click.option("--scale", type=float, help="Expected scale of B relative to A (±10%)"),
        click.option("--scale-range", type=(float, float), default=None,
                     help="Minimum and maximum scale of B relative to A"),
        click.option("--rotation", type=float, help="Expected rotation from A to B (degrees)"),
        click.option("--rotation-tol", type=float, help="Rotation tolerance (degrees)"),
        click.option("--homography", type=click.Choice(["homography", "affine", "similarity", "shift"]),
                     help="Also fit this model to the matched stars"),
        click.option("-v", "--verbose", is_flag=True, help="Enable verbose output"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@main.command()
@click.argument("list_a", type=click.Path(exists=True, path_type=Path))
@click.argument("list_b", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", type=click.Path(path_type=Path),
              help="Write the result as JSON")
@click.option("--matched-prefix", type=click.Path(path_type=Path),
              help="Write matched lists to <prefix>.A.txt and <prefix>.B.txt")
@_match_options
def match(
    list_a: Path,
    list_b: Path,
    output: Optional[Path],
    matched_prefix: Optional[Path],
    config: Optional[Path],
    order: Optional[str],
    method: Optional[str],
    nbright: Optional[int],
    match_radius: Optional[float],
    scale: Optional[float],
    scale_range: Optional[Tuple[float, float]],
    rotation: Optional[float],
    rotation_tol: Optional[float],
    homography: Optional[str],
    verbose: bool,
):
    """
    Match two star lists and solve for the transform from A to B.

    LIST_A, LIST_B: text files with columns "x y mag" or "id x y mag"
    """
    try:
        cfg = _load_config(config, order, method, nbright, match_radius,
                           scale, scale_range, rotation, rotation_tol, homography)
    except (MatchError, ValueError, OSError) as e:
        _fail(str(e), verbose)
        return

    cfg.verbose = verbose or cfg.verbose
    if cfg.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        points_a = read_star_list(list_a)
        points_b = read_star_list(list_b)
        click.echo(f"Matching {len(points_a)} stars in {list_a} with {len(points_b)} stars in {list_b}")

        result = StarMatcher(cfg).match(points_a, points_b)
    except (MatchError, ValueError, OSError) as e:
        _fail(str(e), cfg.verbose)
        return

    _print_result(result)

    if output is None and cfg.output.output_dir is not None:
        output = cfg.output.output_dir / f"{list_b.stem}.json"
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        save_result(output, result, indent=cfg.output.json_indent)
        click.echo(f"  Output: {output}")

    if matched_prefix is None and cfg.output.write_matched_lists:
        directory = output.parent if output else list_b.parent
        matched_prefix = directory / f"{list_b.stem}.matched"
    if matched_prefix:
        _write_matched(matched_prefix, result)


@main.command()
@click.argument("reference", type=click.Path(exists=True, path_type=Path))
@click.argument("targets", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output-dir", type=click.Path(path_type=Path),
              help="Directory for one JSON result per target")
@_match_options
def batch(
    reference: Path,
    targets: Tuple[Path, ...],
    output_dir: Optional[Path],
    config: Optional[Path],
    order: Optional[str],
    method: Optional[str],
    nbright: Optional[int],
    match_radius: Optional[float],
    scale: Optional[float],
    scale_range: Optional[Tuple[float, float]],
    rotation: Optional[float],
    rotation_tol: Optional[float],
    homography: Optional[str],
    verbose: bool,
):
    """
    Match many star lists against one reference list.

    The reference triangles are built once and reused for every target.
    """
    try:
        cfg = _load_config(config, order, method, nbright, match_radius,
                           scale, scale_range, rotation, rotation_tol, homography)
    except (MatchError, ValueError, OSError) as e:
        _fail(str(e), verbose)
        return

    cfg.verbose = verbose or cfg.verbose
    if cfg.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        session = ReferenceSession(read_star_list(reference), cfg)
    except (MatchError, ValueError, OSError) as e:
        _fail(str(e), cfg.verbose)
        return

    output_dir = output_dir or cfg.output.output_dir
    if output_dir:
        output_dir.mkdir(parents=True, exist_ok=True)

    failures = 0
    for target in tqdm(targets, desc="Matching", disable=not cfg.verbose):
        try:
            result = session.match(read_star_list(target))
        except MatchError as e:
            failures += 1
            click.echo(click.style(f"✗ {target}: {e}", fg="red"))
            continue

        transform = result.transform
        click.echo(
            f"✓ {target}: {result.matches.num_matched} matched, "
            f"scale {transform.scale:.5f}, rotation {transform.rotation:.3f}°, sigma {transform.sigma:.4g}"
        )
        if output_dir:
            save_result(output_dir / f"{target.stem}.json", result, indent=cfg.output.json_indent)
        if cfg.output.write_matched_lists:
            _write_matched((output_dir or target.parent) / f"{target.stem}.matched", result)

    click.echo(f"\n{len(targets) - failures}/{len(targets)} lists matched")
    if failures == len(targets):
        sys.exit(1)


@main.command()
@click.argument("star_list", type=click.Path(exists=True, path_type=Path))
@click.argument("transform_path", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", type=click.Path(path_type=Path),
              help="Output star list (default: print to stdout)")
def apply(star_list: Path, transform_path: Path, output: Optional[Path]):
    """
    Apply a saved transform to a star list.

    TRANSFORM_PATH: JSON written by "match -o"
    """
    try:
        transform = load_transform(transform_path)
        points = apply_transform(read_star_list(star_list), transform)
    except (MatchError, ValueError, KeyError, OSError) as e:
        _fail(str(e), False)
        return

    if output:
        write_star_list(output, points)
        click.echo(f"Wrote {len(points)} stars to {output}")
    else:
        for p in points:
            click.echo(f"{p.id} {p.x:.6f} {p.y:.6f} {p.mag:.4f}")


@main.command()
@click.argument("output_path", type=click.Path(path_type=Path))
def init_config(output_path: Path):
    """
    Create a default configuration file.
    """
    cfg = Config()
    cfg.to_yaml(output_path)
    click.echo(f"Created configuration file: {output_path}")


if __name__ == "__main__":
    main()
