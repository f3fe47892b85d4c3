"""Statistical model building blocks: parameters, pdfs, datasets and workspaces."""

from .dataset import Dataset
from .parameters import ArgSet, ProductVar, RealVar
from .pdfs import (
    BINNED_LIKELIHOOD,
    BinnedSumPdf,
    GaussianPdf,
    Pdf,
    ProductPdf,
    ShapeSystematic,
    TemplateSample,
)
from .workspace import ModelConfig, Workspace

__all__ = [
    "ArgSet",
    "BINNED_LIKELIHOOD",
    "BinnedSumPdf",
    "Dataset",
    "GaussianPdf",
    "ModelConfig",
    "Pdf",
    "ProductPdf",
    "ProductVar",
    "RealVar",
    "ShapeSystematic",
    "TemplateSample",
    "Workspace",
]
