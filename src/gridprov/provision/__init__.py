"""Reconciliation engine: diffing, building, allocation, topology, lifecycle."""

from gridprov.provision.lifecycle import DeploymentController, NodeState
from gridprov.provision.reconciler import DeploymentReconciler, NetworkReconciler
from gridprov.provision.topology import TopologyGenerator

__all__ = [
    "DeploymentController",
    "DeploymentReconciler",
    "NetworkReconciler",
    "NodeState",
    "TopologyGenerator",
]
