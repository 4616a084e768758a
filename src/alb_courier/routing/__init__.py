"""
Listener rule routing: specification model, compiler, elbv2 client and lookup.
"""

from .client import LoadBalancerClient
from .compiler import (
    compile_conditions,
    compile_create_rule_request,
    forward_action,
    forward_weights,
    rewrite_forward_actions,
)
from .lookup import ListenerRuleLookup, RuleLookupResult
from .models import Destination, ListenerRule

__all__ = [
    "Destination",
    "ListenerRule",
    "ListenerRuleLookup",
    "LoadBalancerClient",
    "RuleLookupResult",
    "compile_conditions",
    "compile_create_rule_request",
    "forward_action",
    "forward_weights",
    "rewrite_forward_actions",
]
