"""Batch orchestration: scope resolution, chunk planning and the worker pool."""

from chatledger.orchestration.directory import Customer, CustomerChannel, CustomerDirectory, MongoCustomerDirectory
from chatledger.orchestration.planner import normalize_chunk_options, plan_tasks, split_by_month
from chatledger.orchestration.pool import RowCollector, TaskRun, TaskState, WorkerPool
from chatledger.orchestration.scope import CustomerScope, ScopeResolver
from chatledger.orchestration.workflow import BatchWorkflow, run_batch_workflow

__all__ = [
    "BatchWorkflow",
    "Customer",
    "CustomerChannel",
    "CustomerDirectory",
    "CustomerScope",
    "MongoCustomerDirectory",
    "RowCollector",
    "ScopeResolver",
    "TaskRun",
    "TaskState",
    "WorkerPool",
    "normalize_chunk_options",
    "plan_tasks",
    "run_batch_workflow",
    "split_by_month",
]
