"""
Recipe markdown loading.

A recipe is a markdown file that starts with YAML frontmatter:

    ---
    id: marketing-team
    kind: team
    cronJobs:
      - id: daily-report
        schedule: "0 9 * * *"
        message: "Post the daily report"
    ---
    # Body...
"""

from pathlib import Path
from typing import Any, Dict, Tuple

import yaml


class RecipeError(ValueError):
    """A recipe file is missing or its frontmatter is invalid."""


def parse_frontmatter(md: str) -> Tuple[Dict[str, Any], str]:
    """Split a recipe into (frontmatter, body). The frontmatter must include ``id``."""
    if not md.startswith("---\n"):
        raise RecipeError("Recipe markdown must start with YAML frontmatter (---)")
    end = md.find("\n---\n", 4)
    if end == -1:
        raise RecipeError("Recipe frontmatter not terminated (---)")

    try:
        frontmatter = yaml.safe_load(md[4:end])
    except yaml.YAMLError as e:
        raise RecipeError(f"Invalid recipe frontmatter: {e}") from e

    if not isinstance(frontmatter, dict) or not frontmatter.get("id"):
        raise RecipeError("Recipe frontmatter must include id")
    return frontmatter, md[end + 5:]


def load_recipe(path_or_id: str, recipes_dir: Path) -> Tuple[Dict[str, Any], Path]:
    """
    Load a recipe by file path, or by id from the workspace recipes dir.

    Returns (frontmatter, path).
    """
    candidate = Path(path_or_id).expanduser()
    if candidate.suffix == ".md" and candidate.is_file():
        frontmatter, _ = parse_frontmatter(candidate.read_text(encoding="utf-8"))
        return frontmatter, candidate

    if recipes_dir.is_dir():
        for md_path in sorted(recipes_dir.glob("*.md")):
            try:
                frontmatter, _ = parse_frontmatter(md_path.read_text(encoding="utf-8"))
            except RecipeError:
                continue
            if str(frontmatter.get("id")) == path_or_id:
                return frontmatter, md_path

    raise RecipeError(f"Recipe not found: {path_or_id}")
