"""Screenshot optimization: shrink before handing to the vision model."""
from PIL import Image
import io
import base64


def optimize_screenshot(screenshot_bytes: bytes, max_width: int = 1280, max_height: int = 4096,
                        quality: int = 75) -> bytes:
    """
    Resize and re-encode a full-page PNG as JPEG for model consumption.
    Very tall pages are cropped to `max_height` after resizing; the vision
    model only needs the above-the-fold structure and a little more.
    """
    img = Image.open(io.BytesIO(screenshot_bytes))

    w, h = img.size
    if w > max_width:
        ratio = max_width / w
        img = img.resize((max_width, max(1, int(h * ratio))), Image.LANCZOS)
    if img.size[1] > max_height:
        img = img.crop((0, 0, img.size[0], max_height))

    # JPEG has no alpha channel
    if img.mode == 'RGBA':
        bg = Image.new('RGB', img.size, (255, 255, 255))
        bg.paste(img, mask=img.split()[3])
        img = bg
    elif img.mode != 'RGB':
        img = img.convert('RGB')

    buf = io.BytesIO()
    img.save(buf, format='JPEG', quality=quality, optimize=True)
    return buf.getvalue()


def screenshot_to_b64(screenshot_bytes: bytes, compress: bool = True) -> str:
    if compress:
        return base64.b64encode(optimize_screenshot(screenshot_bytes)).decode()
    return base64.b64encode(screenshot_bytes).decode()
