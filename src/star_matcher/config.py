"""
Configuration management for the star matcher.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional
import yaml


@dataclass
class TriangleConfig:
    """Triangle generation and voting configuration."""

    nbright: int = 20  # brightest points used from each list
    triangle_radius: float = 0.002  # max distance in (ba, ca) space
    max_ba_ratio: float = 0.9  # prune threshold for the voting path
    min_votes: int = 2


@dataclass
class QuickMatchConfig:
    """Quick matcher configuration."""

    yt_percent: float = 2.0
    ratio_diff: float = 0.02
    max_sigma: float = 10.0  # variance of match distances
    min_pairs: int = 10
    max_candidates: int = 100000


@dataclass
class FitConfig:
    """Transform fitting configuration."""

    order: Literal["linear", "quadratic", "cubic"] = "linear"
    method: Literal["quick", "vote", "auto"] = "quick"
    match_radius: float = 5.0
    max_iter: int = 3
    halt_sigma: float = 1.0

    # Sigma clipping
    max_match_dist: float = 50.0
    clip_percentile: float = 0.683
    clip_nsigma: float = 3.0


@dataclass
class ConstraintConfig:
    """Optional scale and rotation bounds between the two lists."""

    scale: Optional[float] = None  # single value, widened by scale_percent
    scale_percent: float = 10.0
    min_scale: Optional[float] = None
    max_scale: Optional[float] = None
    rotation_deg: Optional[float] = None
    rotation_tol_deg: Optional[float] = None
    retry_without_scale: bool = True


@dataclass
class HomographyConfig:
    """Projective model fitted to the final matches."""

    enabled: bool = False
    model: Literal["homography", "affine", "similarity", "shift"] = "homography"
    ransac_threshold: float = 3.0


@dataclass
class OutputConfig:
    """Output configuration."""

    output_dir: Optional[Path] = None  # default directory for results and matched lists
    write_matched_lists: bool = False  # write <stem>.matched.A.txt / .B.txt next to results
    json_indent: int = 2


@dataclass
class Config:
    """Main configuration container."""

    triangles: TriangleConfig = field(default_factory=TriangleConfig)
    quick_match: QuickMatchConfig = field(default_factory=QuickMatchConfig)
    fit: FitConfig = field(default_factory=FitConfig)
    constraints: ConstraintConfig = field(default_factory=ConstraintConfig)
    homography: HomographyConfig = field(default_factory=HomographyConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    verbose: bool = False

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls._from_dict(data or {})

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "triangles" in data:
            config.triangles = TriangleConfig(**data["triangles"])
        if "quick_match" in data:
            config.quick_match = QuickMatchConfig(**data["quick_match"])
        if "fit" in data:
            config.fit = FitConfig(**data["fit"])
        if "constraints" in data:
            config.constraints = ConstraintConfig(**data["constraints"])
        if "homography" in data:
            config.homography = HomographyConfig(**data["homography"])
        if "output" in data:
            out_data = dict(data["output"])
            if out_data.get("output_dir") is not None:
                out_data["output_dir"] = Path(out_data["output_dir"])
            config.output = OutputConfig(**out_data)

        config.verbose = data.get("verbose", False)

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        import dataclasses

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                obj = dataclasses.asdict(obj)
            if isinstance(obj, dict):
                return {k: convert(v) for k, v in obj.items()}
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        data = convert(self)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
