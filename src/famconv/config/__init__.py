from .manifest import ConversionManifest, FamilyRule, ResolvedFamilyPlan

__all__ = ["ConversionManifest", "FamilyRule", "ResolvedFamilyPlan"]
