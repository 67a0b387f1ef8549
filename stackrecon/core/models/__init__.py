"""
Domain models — templates, exports, stacks, receipts and the app config.

All models are re-exported here for convenient access:

    from stackrecon.core.models import Template, Output, StackDeployment, AppConfig
"""

from stackrecon.core.models.app import (
    AppConfig,
    AppSettings,
    DeploySettings,
    FunctionConfig,
    OutputConfig,
    ResourceConfig,
    StackConfig,
)
from stackrecon.core.models.export import DependencyEdge, Export, Reference, export_name_for
from stackrecon.core.models.receipt import DeployReceipt
from stackrecon.core.models.stack import Deployable, StackDeployment, StackState, Synthesizable
from stackrecon.core.models.template import IMPORT_VALUE, Output, Resource, Template

__all__ = [
    # app.py
    "AppConfig",
    "AppSettings",
    "DeploySettings",
    "FunctionConfig",
    "OutputConfig",
    "ResourceConfig",
    "StackConfig",
    # export.py
    "DependencyEdge",
    "Export",
    "Reference",
    "export_name_for",
    # receipt.py
    "DeployReceipt",
    # stack.py
    "Deployable",
    "StackDeployment",
    "StackState",
    "Synthesizable",
    # template.py
    "IMPORT_VALUE",
    "Output",
    "Resource",
    "Template",
]
