from switchyard.integrations.republic_client import RepublicInference, build_llm

__all__ = ["RepublicInference", "build_llm"]
