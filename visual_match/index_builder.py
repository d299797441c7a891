"""
Offline catalog embedding builder.

Reads product metadata (a JSON list of records without embeddings),
computes the colour embedding of each product image from a local
directory, and writes the catalog JSON consumed by load_catalog().

Image files are located by the record's 'filename' field, falling back
to the basename of its 'image' reference. The written catalog is
validated with the same rules applied at load time.
"""

import os
import json
import logging
import argparse

from .catalog import parse_catalog
from .embedding import CANVAS_SIZE, extract_embedding
from .errors import DataError, DecodeError
from .preprocessing import load_image_file

logger = logging.getLogger(__name__)


def _image_filename(record: dict) -> str:
    filename = record.get("filename")
    if filename:
        return filename
    image = record.get("image") or ""
    return os.path.basename(image.split("?", 1)[0])


def build_catalog(image_dir: str,
                  metadata_path: str,
                  output_path: str,
                  canvas_size: int = None) -> dict:
    """
    Compute embeddings for every product and write the catalog file.

    Records whose image is missing or cannot be decoded are left out of
    the written catalog and listed under 'failed' in the result.

    Args:
        image_dir: Directory containing product images.
        metadata_path: JSON list of product records.
        output_path: Path of the catalog JSON to write.
        canvas_size: Canvas edge length; defaults to CANVAS_SIZE.

    Returns:
        Dict with 'success', 'processed', 'failed' and 'output_path'.

    Raises:
        DataError: If the metadata cannot be read or a built record fails
            catalog validation.
    """
    try:
        with open(metadata_path, 'r', encoding='utf-8') as f:
            metadata = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DataError(f"Metadata could not be read: {metadata_path}: {e}") from e

    if not isinstance(metadata, list):
        raise DataError("Metadata must be a list of product records")

    size = canvas_size or CANVAS_SIZE
    logger.info(f"Building catalog from {len(metadata)} records in {image_dir} ({size}px canvas)")

    records = []
    failed = []

    for i, record in enumerate(metadata):
        if not isinstance(record, dict):
            raise DataError(f"Metadata record {i} is not an object")

        filename = _image_filename(record)
        filepath = os.path.join(image_dir, filename)

        try:
            image = load_image_file(filepath)
            embedding = extract_embedding(image, size)
        except DecodeError as e:
            logger.warning(f"Failed to process {filename}: {e}")
            failed.append(record.get("id"))
            continue

        built = {k: v for k, v in record.items() if k != "filename"}
        built.setdefault("image", filename)
        built["embedding"] = [float(v) for v in embedding]
        records.append(built)

        if (i + 1) % 100 == 0:
            logger.info(f"Processed {i + 1}/{len(metadata)} records")

    catalog = parse_catalog(records)

    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump([entry.to_dict() for entry in catalog], f, indent=2)

    logger.info(
        f"Catalog built: {len(catalog)} products, {len(failed)} failed, "
        f"written to {output_path}"
    )

    return {
        "success": bool(catalog),
        "processed": len(catalog),
        "failed": failed,
        "output_path": output_path,
    }


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Build catalog embeddings from product images.")
    parser.add_argument("image_dir", help="Directory containing product images")
    parser.add_argument("metadata", help="JSON list of product records")
    parser.add_argument("output", help="Catalog JSON file to write")
    parser.add_argument("--canvas-size", type=int, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    result = build_catalog(args.image_dir, args.metadata, args.output, args.canvas_size)
    return 0 if result["success"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
