from .pixels import all_colors, apply_palette, as_pixel_rows, palette_to_bytes, sample_colors
from .validation import count_distinct_colors, validate_pixel_buffer, validate_points

__all__ = [
    "all_colors",
    "apply_palette",
    "as_pixel_rows",
    "palette_to_bytes",
    "sample_colors",
    "count_distinct_colors",
    "validate_pixel_buffer",
    "validate_points",
]
