"""
First-page rasterization through an external tool (poppler's pdftoppm).

Only used when the pipeline has decided the page must be OCR'd by the cloud
image service. Every failure yields None so the caller can degrade.
"""

import subprocess
import tempfile
from pathlib import Path
from loguru import logger
from ..core.config import Settings


class PageRasterizer:
    def __init__(self, settings: Settings):
        self.command = settings.rasterizer_command
        self.dpi = settings.rasterizer_dpi
        self.timeout = settings.rasterizer_timeout_seconds

    def build_command(self, pdf_path: Path, output_prefix: Path) -> list[str]:
        return [
            self.command,
            "-f", "1",
            "-l", "1",
            "-gray",
            "-r", str(self.dpi),
            "-png",
            "-singlefile",
            str(pdf_path),
            str(output_prefix),
        ]

    def rasterize_first_page(self, pdf_bytes: bytes) -> bytes | None:
        # The directory holds both the input PDF and the rendered page and is
        # removed on every exit path
        with tempfile.TemporaryDirectory(prefix="invoice-raster-") as workdir:
            pdf_path = Path(workdir) / "input.pdf"
            output_prefix = Path(workdir) / "page"
            pdf_path.write_bytes(pdf_bytes)

            try:
                completed = subprocess.run(
                    self.build_command(pdf_path, output_prefix),
                    capture_output=True,
                    timeout=self.timeout,
                    check=False,
                )
            except OSError as e:
                logger.warning("Rasterization tool not available", command=self.command, error=str(e))
                return None
            except subprocess.TimeoutExpired:
                logger.warning("Rasterization timed out", timeout=self.timeout)
                return None

            if completed.returncode != 0:
                logger.warning(
                    "Rasterization failed",
                    returncode=completed.returncode,
                    stderr=completed.stderr.decode("utf-8", errors="replace")[:200],
                )
                return None

            image_path = output_prefix.with_suffix(".png")
            if not image_path.exists():
                logger.warning("Rasterization produced no image")
                return None

            image = image_path.read_bytes()
            logger.info("Rasterized first page", dpi=self.dpi, image_bytes=len(image))
            return image
