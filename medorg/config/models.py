from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_VIDEO_EXTENSIONS = [
    ".mp4", ".mkv", ".mov", ".avi", ".wmv", ".flv", ".webm", ".m4v", ".ts", ".mpg", ".mpeg",
]


def _default_categories() -> Dict[str, str]:
    table = {}
    groups = {
        "video": DEFAULT_VIDEO_EXTENSIONS,
        "image": [".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".heic", ".tif", ".tiff"],
        "audio": [".mp3", ".flac", ".wav", ".aac", ".ogg", ".m4a", ".wma"],
        "document": [".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt", ".md"],
        "archive": [".zip", ".rar", ".7z", ".tar", ".gz", ".bz2", ".xz"],
        "subtitle": [".srt", ".ass", ".ssa", ".vtt", ".sub"],
    }
    for category, extensions in groups.items():
        for ext in extensions:
            table[ext] = category
    return table


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


class GeneralConfig(BaseModel):
    debug: bool = False
    log_path: Optional[str] = None
    video_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_VIDEO_EXTENSIONS))

    @field_validator("video_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [_normalize_extension(ext) for ext in v]


class EncoderConfig(BaseModel):
    cpu_threshold: float = Field(default=95.0, gt=0.0, le=100.0)
    poll_interval_s: float = Field(default=0.5, gt=0.0)
    output_suffix: str = ".convert"
    container: str = "mkv"
    crf: int = Field(default=16, ge=0, le=51)
    preset: str = "fast"
    fail_dir: str = "fail"
    post_encode_action: Literal["none", "move_source", "move_output"] = "none"
    finish_dir: str = "finish"


class DedupConfig(BaseModel):
    index_filename: str = ".medorg_fingerprints.json"
    quarantine_dir: str = "duplication_file"
    workers: Optional[int] = Field(default=None, gt=0)
    chunk_size: int = Field(default=4 * 1024 * 1024, gt=0)


class ContactSheetConfig(BaseModel):
    columns: int = Field(default=9, gt=0)
    rows: int = Field(default=6, gt=0)
    tile_width: int = Field(default=320, gt=0)
    tile_height: int = Field(default=180, gt=0)
    output_dir: str = "_contact_sheets"
    scene_threshold: float = Field(default=12.0, gt=0.0)
    jpeg_quality: int = Field(default=2, ge=1, le=31)
    workers: Optional[int] = Field(default=None, gt=0)
    min_duration_s: float = Field(default=1.0, ge=0.0)

    @property
    def thumbnail_count(self) -> int:
        return self.columns * self.rows


class CategorizeConfig(BaseModel):
    categories: Dict[str, str] = Field(default_factory=_default_categories)
    other_dir: str = "other"

    @field_validator("categories")
    @classmethod
    def normalize_keys(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {_normalize_extension(ext): category for ext, category in v.items()}

    @model_validator(mode="after")
    def validate_folder_names(self):
        for category in set(self.categories.values()) | {self.other_dir}:
            if not category or "/" in category or "\\" in category or category in (".", ".."):
                raise ValueError(f"Invalid category folder name: {category!r}")
        return self


class OrphanConfig(BaseModel):
    orphan_dir: str = "orphan_files"


class RenameConfig(BaseModel):
    start_index: int = Field(default=1, ge=0)
    workers: Optional[int] = Field(default=None, gt=0)
    dry_run: bool = False


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    contact_sheet: ContactSheetConfig = Field(default_factory=ContactSheetConfig)
    categorize: CategorizeConfig = Field(default_factory=CategorizeConfig)
    orphans: OrphanConfig = Field(default_factory=OrphanConfig)
    rename: RenameConfig = Field(default_factory=RenameConfig)
