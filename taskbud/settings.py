import json
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SETTINGS: Dict[str, Any] = {
    "storage": {
        "blob_backend": "file",
        "store_name": "task-bud-store",
        "store_key": "task-list",
        "s3": {
            "bucket": "",
            "region": "",
            "endpoint": "",
        },
    },
    "remote": {
        "base_url": "",
        "timeout": 10,
    },
}


class EnvironmentSettings(BaseSettings):
    """Deployment flags read from the process environment."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Absent means "local": the durable tier is skipped.
    managed: bool = Field(
        default=False, validation_alias=AliasChoices("TASKBUD_MANAGED", "NETLIFY")
    )
    remote_url: Optional[str] = Field(
        default=None, validation_alias="TASKBUD_REMOTE_URL"
    )
    data_dir: str = Field(default="data", validation_alias="TASKBUD_DATA_DIR")
    log_level: str = Field(default="DEBUG", validation_alias="TASKBUD_LOG_LEVEL")
    host: str = Field(default="127.0.0.1", validation_alias="TASKBUD_HOST")
    port: int = Field(default=8000, validation_alias="TASKBUD_PORT")

    blob_backend: Optional[str] = Field(
        default=None, validation_alias="TASKBUD_BLOB_BACKEND"
    )
    s3_bucket: Optional[str] = Field(default=None, validation_alias="TASKBUD_S3_BUCKET")
    s3_region: Optional[str] = Field(default=None, validation_alias="TASKBUD_S3_REGION")
    s3_endpoint: Optional[str] = Field(
        default=None, validation_alias="TASKBUD_S3_ENDPOINT"
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, validation_alias="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, validation_alias="AWS_SECRET_ACCESS_KEY"
    )


class SettingsManager:
    """
    Handles loading the editable storage configuration file.

    The file is stored as pretty-printed JSON so operators can edit it by hand.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._settings: Dict[str, Any] | None = None
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def settings(self) -> Dict[str, Any]:
        if self._settings is None:
            self._settings = self._load_from_disk()
        return self._settings

    def _load_from_disk(self) -> Dict[str, Any]:
        if not self.path.exists():
            self._write(DEFAULT_SETTINGS)
            return json.loads(json.dumps(DEFAULT_SETTINGS))
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        # Merge with defaults to backfill new keys without overwriting manual edits.
        merged = json.loads(json.dumps(DEFAULT_SETTINGS))
        _deep_update(merged, data)
        return merged

    def reload(self) -> Dict[str, Any]:
        self._settings = self._load_from_disk()
        return self._settings

    def _write(self, data: Dict[str, Any]) -> None:
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
            handle.write("\n")


def resolve_settings(
    file_settings: Dict[str, Any], env: EnvironmentSettings
) -> Dict[str, Any]:
    """
    Overlay environment values on the file configuration.

    The returned mapping carries two extra top-level keys, ``managed`` and
    ``data_dir``, which only the environment can set.
    """
    resolved = json.loads(json.dumps(file_settings))
    overrides: Dict[str, Any] = {"storage": {"s3": {}}, "remote": {}}
    if env.blob_backend:
        overrides["storage"]["blob_backend"] = env.blob_backend
    if env.s3_bucket:
        overrides["storage"]["s3"]["bucket"] = env.s3_bucket
    if env.s3_region:
        overrides["storage"]["s3"]["region"] = env.s3_region
    if env.s3_endpoint:
        overrides["storage"]["s3"]["endpoint"] = env.s3_endpoint
    if env.aws_access_key_id:
        overrides["storage"]["s3"]["aws_access_key_id"] = env.aws_access_key_id
    if env.aws_secret_access_key:
        overrides["storage"]["s3"]["aws_secret_access_key"] = env.aws_secret_access_key
    if env.remote_url is not None:
        overrides["remote"]["base_url"] = env.remote_url
    _deep_update(resolved, overrides)
    resolved["managed"] = env.managed
    resolved["data_dir"] = env.data_dir
    return resolved


def _deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """
    Recursively update a mapping, preserving nested structures.
    """
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value
