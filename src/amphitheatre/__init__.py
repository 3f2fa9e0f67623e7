"""
amphitheatre - reconciliation and workflow orchestration for multi-service
application deployments on Kubernetes.

A Playbook declares a set of actors and their dependencies. The controller
resolves the dependency graph into layers, runs each actor's workflow
(resolve inputs, build, sync, verify) layer by layer and keeps the cluster
converged with the declared state.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

__version__ = "0.1.0"
