import io, logging
from PIL import Image
from .settings import SCENE_IMAGE_MAX_WIDTH, SCENE_IMAGE_JPEG_QUALITY

logger = logging.getLogger(__name__)

def to_scene_jpeg(image_data: bytes, max_width: int = SCENE_IMAGE_MAX_WIDTH,
                  quality: int = SCENE_IMAGE_JPEG_QUALITY) -> bytes:
    """Flatten, shrink (never enlarge) and re-encode provider output as JPEG."""
    with Image.open(io.BytesIO(image_data)) as pil_img:
        logger.info(f"Normalising {pil_img.format} image {pil_img.size[0]}x{pil_img.size[1]} mode={pil_img.mode}")
        img = pil_img
        # JPEG has no alpha channel; paste on white so transparent areas don't turn black
        if img.mode in ("RGBA", "LA", "P"):
            img = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            img = background
        elif img.mode != "RGB":
            img = img.convert("RGB")

        if img.width > max_width:
            height = round(img.height * max_width / img.width)
            img = img.resize((max_width, height), Image.LANCZOS)

        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality)
        return out.getvalue()
