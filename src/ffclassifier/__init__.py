"""Feed-forward classifier training on minibatch sources (PyTorch backend)."""

__version__ = "0.1.0"
