"""goinst: reversible instrumentation of Go sources with the whatap go-api runtime."""

__version__ = "0.1.0"
