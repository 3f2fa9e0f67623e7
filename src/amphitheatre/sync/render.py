#!/usr/bin/env python3
"""
Render an actor's Sync Targets from Jinja2 templates.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import re
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from amphitheatre.core.constants import ANNOTATION_SOURCE_DIGEST, LABEL_ACTOR, LABEL_APPLICATION
from amphitheatre.resources.types import ActorSpec, Application
from amphitheatre.sync.targets import Owner, SyncTarget, target_from_manifest

TEMPLATE_DIR = Path(__file__).parent / "templates"


def env_prefix(name: str) -> str:
    return re.sub(r"[^A-Z0-9]", "_", name.upper())


class ManifestRenderer:
    """Turns an ActorSpec plus its built image into Sync Targets."""

    def __init__(self, template_dir: Optional[Path] = None):
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def _dependency_env(self, app: Application, actor: ActorSpec) -> Dict[str, str]:
        """Service discovery variables for every dependency exposing ports."""
        env: Dict[str, str] = {}
        for dep_name in sorted(set(actor.dependencies)):
            dep = app.actor(dep_name)
            if dep is None or not dep.ports:
                continue
            prefix = env_prefix(dep.name)
            env[f"{prefix}_SERVICE_HOST"] = f"{dep.name}.{app.namespace}.svc"
            env[f"{prefix}_SERVICE_PORT"] = str(dep.ports[0].port)
        return env

    def render(self, app: Application, actor: ActorSpec, image: str,
               source_digest: Optional[str] = None) -> List[SyncTarget]:
        """
        Render the desired targets of one actor.

        Args:
            app: Owning Playbook
            actor: Actor specification
            image: Image reference to run (built or prebuilt)
            source_digest: Digest of the source the image was built from

        Returns:
            Targets sorted by (kind, name)
        """
        owner = Owner(namespace=app.namespace, application=app.name, actor=actor.name)
        selector = {LABEL_APPLICATION: app.name, LABEL_ACTOR: actor.name}
        env = self._dependency_env(app, actor)
        env.update(actor.env)
        context = {
            "actor": actor,
            "namespace": app.namespace,
            "image": image,
            "labels": dict(owner.labels),
            "selector": selector,
            "annotations": {ANNOTATION_SOURCE_DIGEST: source_digest} if source_digest else {},
            "owner_reference": app.owner_reference(),
            "env": [{"name": k, "value": v} for k, v in sorted(env.items())],
        }

        templates = ["deployment.yaml.j2"]
        if actor.ports:
            templates.append("service.yaml.j2")

        targets = []
        for template_name in templates:
            rendered = self.jinja_env.get_template(template_name).render(**context)
            manifest = yaml.safe_load(rendered)
            targets.append(target_from_manifest(manifest, owner))
        return sorted(targets, key=lambda t: (t.kind, t.name))
