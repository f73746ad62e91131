import io

from PIL import Image, UnidentifiedImageError


def make_thumbnail_png(image_bytes, target_width=256):
    """Re-encode any Pillow-readable image as an RGB PNG no wider than ``target_width``.

    Returns ``(png_bytes, width, height)``.
    """
    if not image_bytes:
        raise ValueError("thumbnail image is empty")
    try:
        img = Image.open(io.BytesIO(bytes(image_bytes)))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"thumbnail is not a readable image: {exc}") from exc

    if img.mode != "RGB":
        img = img.convert("RGB")
    w, h = img.size
    if w <= 0 or h <= 0:
        raise ValueError("invalid image size")

    if w > target_width:
        new_h = max(1, int(round(h * (target_width / float(w)))))
        img = img.resize((target_width, new_h), Image.Resampling.LANCZOS)

    out = io.BytesIO()
    img.save(out, format="PNG", optimize=True)
    return out.getvalue(), img.size[0], img.size[1]
