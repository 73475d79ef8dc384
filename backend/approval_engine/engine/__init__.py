"""Workflow Engine - The brain of the system"""
from .engine import WorkflowEngine
from .condition_evaluator import ConditionEvaluator
from .graph_router import GraphRouter
from .directory_resolver import DirectoryResolver
from .delegation_registry import DelegationRegistry
from .quorum import QuorumEvaluator
from .instance_runner import InstanceRunner
from .decision_processor import DecisionProcessor
from .audit_writer import AuditWriter

__all__ = [
    "WorkflowEngine",
    "ConditionEvaluator",
    "GraphRouter",
    "DirectoryResolver",
    "DelegationRegistry",
    "QuorumEvaluator",
    "InstanceRunner",
    "DecisionProcessor",
    "AuditWriter",
]
