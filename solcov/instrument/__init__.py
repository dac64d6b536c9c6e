"""Source instrumentation."""

from .injector import Injection, InjectionPlan
from .instrumenter import InstrumentedUnit, Instrumenter, Scope

__all__ = ["Injection", "InjectionPlan", "InstrumentedUnit", "Instrumenter", "Scope"]
