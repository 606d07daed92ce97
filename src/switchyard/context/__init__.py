from switchyard.context.compressor import ContextWindowCompressor

__all__ = ["ContextWindowCompressor"]
