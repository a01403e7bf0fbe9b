"""Application configuration: settings schema and config.yaml loader"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


CONFIG_FILE = "config.yaml"


class Settings(BaseModel):
    site_name:     str = "site"
    site_url:      str = Field(default="http://localhost:8000/", description="Public URL of the live site")
    content_dir:   str = Field(default="content",   description="Root of the document tree")
    template_dir:  str = Field(default="templates", description="Jinja2 templates (page.html, index.html)")
    static_dir:    str = Field(default="static",    description="Authored and fetched static assets")
    output_dir:    str = Field(default="public",    description="Build output directory")
    artifact_dir:  str = Field(default=".sitepub/artifacts", description="Packaged artifacts")
    deploy_dir:    str = Field(default=".sitepub/site",      description="Local hosting target root")
    manifest_file: str = Field(default="assets.yaml",        description="Dependency manifest")
    db_url:        str = "sqlite:///sitepub.db"
    registry_url:  str = "https://registry.npmjs.org"
    fetch_timeout:   float = Field(default=30.0, gt=0, description="Seconds per registry request")
    fetch_workers:   int   = Field(default=4,    ge=1)
    build_workers:   int   = Field(default=1,    ge=1, description="Parallel document renders")
    publish_timeout: float = Field(default=60.0, gt=0, description="Seconds to wait for the target to acknowledge")
    max_releases:    int   = Field(default=5,    ge=0, description="Releases kept on the target; 0 keeps all")
    include_drafts:  bool  = False
    clean_output:    bool  = Field(default=False, description="Delete the build output once it is packaged")


def load_config(overrides: dict[str, Any] = None) -> Settings:
    """Load Settings from config.yaml, then SITEPUB_<FIELD> env vars, then non-None CLI overrides."""
    data: dict[str, Any] = {}
    if Path(CONFIG_FILE).exists():
        try:
            data = yaml.safe_load(Path(CONFIG_FILE).read_text()) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid {CONFIG_FILE}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Invalid {CONFIG_FILE}: expected a mapping")

    for name in Settings.model_fields:
        if val := os.getenv(f"SITEPUB_{name.upper()}"):
            data[name] = val

    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
