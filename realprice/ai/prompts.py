"""Centralized prompt templates for LLM interactions."""

from typing import Any, Dict

from pydantic import BaseModel


class ProductIdentificationPrompt(BaseModel):
    """Prompt schema for identifying the product in a photo."""

    def to_prompt(self) -> str:
        return (
            "Analyze the image provided and identify the main product shown.\n"
            "Provide a concise and specific identification of the product, "
            'for example "red t-shirt" or "iPhone 15 Pro".'
        )

    @staticmethod
    def get_system_prompt() -> str:
        return "You are an AI assistant designed to identify products in images."

    @staticmethod
    def get_response_schema() -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "productIdentification": {
                    "type": "string",
                    "description": "The most specific identification of the product in the image",
                },
            },
            "required": ["productIdentification"],
        }


class RelatedProductsPrompt(BaseModel):
    """Prompt schema for related-product suggestions."""

    product_name: str
    catalog_names: list[str] = []
    limit: int = 5

    def to_prompt(self) -> str:
        parts = [
            f'Given the product "{self.product_name}", suggest up to {self.limit} '
            "commercially relevant products that a user might also be interested in purchasing.",
            "These could be complementary products, accessories, or popular alternatives.",
            "Focus on suggesting products that are likely to be in a retail catalog.",
        ]
        if self.catalog_names:
            parts.append(
                "Consider the following known products from the catalog "
                "(use them as inspiration, but don't be limited to them): "
                + ", ".join(self.catalog_names)
            )
        parts.append(
            "Provide only a list of product names. The names should be in English "
            "and concise, suitable for use as search terms."
        )
        parts.append(
            'Example: for "smartphone" a good answer is ["screen protector", "phone case", '
            '"wireless earbuds", "power bank", "smartwatch"].'
        )
        parts.append(f"Identified Product: {self.product_name}")
        return "\n".join(parts)

    @staticmethod
    def get_system_prompt() -> str:
        return "You are an expert in retail and product association."

    @staticmethod
    def get_response_schema() -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "relatedProductNames": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Commercially related product names, suitable as search terms",
                },
            },
            "required": ["relatedProductNames"],
        }
