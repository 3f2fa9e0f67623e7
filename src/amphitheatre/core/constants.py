#!/usr/bin/env python3
"""
API group, label and annotation keys shared by the controller.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

API_GROUP = "amphitheatre.app"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

APPLICATION_KIND = "Playbook"
APPLICATION_PLURAL = "playbooks"

FIELD_MANAGER = "amp-controller"

# Guards cleanup of a Playbook's actors before the object is removed
FINALIZER = f"{APPLICATION_PLURAL}.{API_GROUP}/finalizer"

# Ownership labels carried by every Sync Target
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_APPLICATION = f"{API_GROUP}/playbook"
LABEL_ACTOR = f"{API_GROUP}/actor"

ANNOTATION_CONTENT_HASH = f"{API_GROUP}/content-hash"
ANNOTATION_SOURCE_DIGEST = f"{API_GROUP}/source-digest"

# Condition reasons
REASON_SPEC_CHANGED = "SpecChanged"
REASON_RESOLVING = "Resolving"
REASON_RESOLUTION_FAILED = "ResolutionFailed"
REASON_BUILDING = "Building"
REASON_SYNCING = "Syncing"
REASON_SYNCED = "Synced"
REASON_RUNNING = "Running"
REASON_READY = "Ready"
REASON_NOT_READY = "NotReady"
REASON_STEP_FAILED = "StepFailed"
REASON_CANCELLED = "Cancelled"
REASON_RETRIES_EXHAUSTED = "RetriesExhausted"
REASON_RETRYING = "Retrying"
REASON_BLOCKED = "BlockedByDependency"
