"""
Image preprocessing ahead of optical recognition.

Phone photos and low-DPI scans are normalised into a high-contrast, upright,
binarised grayscale image: EXIF orientation, grayscale, upscale, deskew,
CLAHE contrast, then adaptive thresholding.
"""

from io import BytesIO

import cv2
import numpy as np
from loguru import logger
from PIL import Image, ImageOps

DESKEW_MIN_ANGLE = 0.3
DESKEW_MAX_ANGLE = 45.0


def load_image(content: bytes) -> Image.Image:
    image = Image.open(BytesIO(content))
    image.load()
    return image


def upscale(image: Image.Image, min_dimension: int) -> Image.Image:
    """Scale up so the longest side reaches ``min_dimension``; larger images pass through"""
    longest = max(image.size)
    if longest >= min_dimension or longest == 0:
        return image
    factor = min_dimension / longest
    size = (round(image.width * factor), round(image.height * factor))
    return image.resize(size, Image.Resampling.LANCZOS)


def estimate_skew(gray: np.ndarray) -> float:
    """Counter-clockwise rotation in degrees that levels the text block, 0.0 when there is no ink"""
    _, inverted = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV | cv2.THRESH_OTSU)
    coords = np.column_stack(np.where(inverted > 0))
    if len(coords) < 10:
        return 0.0

    angle = cv2.minAreaRect(coords.astype(np.float32))[-1]
    # OpenCV < 4.5 reports [-90, 0), newer versions (0, 90]
    if angle < -45:
        angle += 90
    elif angle > 45:
        angle -= 90
    # coords are (row, col), which mirrors the rect angle
    return float(-angle)


def deskew(gray: np.ndarray) -> np.ndarray:
    angle = estimate_skew(gray)
    if abs(angle) < DESKEW_MIN_ANGLE or abs(angle) > DESKEW_MAX_ANGLE:
        return gray

    height, width = gray.shape[:2]
    matrix = cv2.getRotationMatrix2D((width / 2, height / 2), angle, 1.0)
    logger.debug("Deskewing image", angle=round(angle, 2))
    return cv2.warpAffine(
        gray, matrix, (width, height),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_REPLICATE,
    )


def enhance_contrast(gray: np.ndarray) -> np.ndarray:
    clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
    return clahe.apply(gray)


def binarize(gray: np.ndarray) -> np.ndarray:
    return cv2.adaptiveThreshold(
        gray, 255,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY,
        31, 15,
    )


def preprocess(image: Image.Image, min_dimension: int = 1500) -> Image.Image:
    """
    Prepare an image for recognition.

    Falls back to the plain grayscale image if any OpenCV step fails, so a bad
    preprocessing step never prevents recognition.

    Args:
        image: Decoded source image
        min_dimension: Minimum length in pixels of the longest side

    Returns:
        Single-channel PIL image
    """
    image = ImageOps.exif_transpose(image)
    gray_image = upscale(image.convert("L"), min_dimension)

    try:
        gray = np.array(gray_image)
        gray = deskew(gray)
        gray = enhance_contrast(gray)
        gray = binarize(gray)
        return Image.fromarray(gray)
    except cv2.error as e:
        logger.warning(f"Image preprocessing failed, using grayscale original: {e}")
        return gray_image
