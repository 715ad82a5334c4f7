"""shipctl - deploy a Java artifact to a remote host over SSH."""

__version__ = "0.1.0"
