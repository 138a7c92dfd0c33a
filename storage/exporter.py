"""Writes enhanced chapters to standalone HTML files."""
import hashlib
import html
import re
from pathlib import Path

import aiofiles

from utils.logger import setup_logger
import config

logger = setup_logger(__name__)

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ max-width: 42em; margin: 2em auto; padding: 0 1em; font-family: Georgia, serif; line-height: 1.6; }}
.game-stats-box {{ white-space: pre-wrap; border: 1px solid #888; border-radius: 6px; padding: 0.8em; font-family: monospace; }}
</style>
</head>
<body>
<h1>{title}</h1>
{body}
</body>
</html>
"""


def output_filename(title: str, document_id: str) -> str:
    """Filesystem-safe name derived from the title, unique per document."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:60] or "chapter"
    digest = hashlib.sha256(document_id.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{digest}.html"


async def export_html(title: str, body: str, document_id: str, output_dir: Path = config.ENHANCED_DIR) -> Path:
    """Write an enhanced chapter page.

    Args:
        title: Chapter title
        body: Merged enhanced HTML
        document_id: Document id, used to keep file names unique
        output_dir: Target directory

    Returns:
        Path of the written file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / output_filename(title, document_id)

    async with aiofiles.open(path, 'w', encoding='utf-8') as f:
        await f.write(PAGE_TEMPLATE.format(title=html.escape(title), body=body))

    logger.info(f"✓ Enhanced chapter written to {path}")
    return path
