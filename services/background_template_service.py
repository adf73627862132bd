# services/background_template_service.py
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from services.image_types import ImageType, KEY_IMAGE_TYPES
from services.errors import ConfigurationError, InvalidImageType
from services.image_categorization import coerce_image_type, is_key_image_type

logger = logging.getLogger(__name__)

# Front views → white studio, rear views → gray studio, sides → blue gradient
BASE_TEMPLATES: Mapping[ImageType, str] = MappingProxyType({
    ImageType.FRONT_QUARTER: "studio-white.jpg",
    ImageType.FRONT: "studio-white.jpg",
    ImageType.BACK_QUARTER: "studio-gray.jpg",
    ImageType.BACK: "studio-gray.jpg",
    ImageType.DRIVER_SIDE: "gradient-blue.jpg",
    ImageType.PASSENGER_SIDE: "gradient-blue.jpg",
})


@dataclass(frozen=True)
class BackgroundTemplateResult:
    template_url: str
    template_name: str
    image_type: ImageType

    def to_dict(self) -> Dict[str, str]:
        return {
            "templateUrl": self.template_url,
            "templateName": self.template_name,
            "imageType": self.image_type.value,
        }


@dataclass(frozen=True)
class BackgroundTemplateConfig:
    """
    Where templates live and which per-type overrides apply. Immutable: use
    ``with_override`` to derive a new config.
    """
    base_url: str
    overrides: Mapping[ImageType, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def for_container(cls, container_url: str) -> "BackgroundTemplateConfig":
        return cls(base_url=container_url.rstrip("/"))

    def with_override(self, image_type: ImageType, template_name: str) -> "BackgroundTemplateConfig":
        image_type = coerce_image_type(image_type)
        if not is_key_image_type(image_type):
            raise InvalidImageType(
                f"Cannot update template mapping for gallery image type: {image_type.value}"
            )
        if not template_name:
            raise InvalidImageType("Template name must not be empty")
        merged = dict(self.overrides)
        merged[image_type] = template_name
        return BackgroundTemplateConfig(base_url=self.base_url, overrides=MappingProxyType(merged))


class BackgroundTemplateService:
    """
    Maps key image types to background templates. Gallery images are never
    processed and get no template.
    """

    def __init__(
        self,
        config: BackgroundTemplateConfig,
        base_templates: Mapping[ImageType, str] = BASE_TEMPLATES,
    ):
        missing = [t.value for t in KEY_IMAGE_TYPES if not base_templates.get(t)]
        if missing:
            raise ConfigurationError(
                f"No background template mapping found for image types: {', '.join(missing)}"
            )
        self.config = config
        self._base = MappingProxyType(dict(base_templates))

    def template_name(self, image_type: ImageType) -> Optional[str]:
        """Effective template file name, or None for gallery types."""
        image_type = coerce_image_type(image_type)
        if not is_key_image_type(image_type):
            return None
        name = self.config.overrides.get(image_type) or self._base.get(image_type)
        if not name:
            raise ConfigurationError(
                f"No background template mapping found for image type: {image_type.value}"
            )
        return name

    def template_url(self, template_name: str) -> str:
        return f"{self.config.base_url}/backgrounds/{template_name}"

    def select_background_template(
        self,
        image_type: ImageType,
        store_overrides: Optional[Mapping[ImageType, str]] = None,
    ) -> Optional[BackgroundTemplateResult]:
        """
        Pick the background for an image type.

        A store's own background URL wins over the shared template table.
        Returns None for gallery types.
        """
        image_type = coerce_image_type(image_type)
        if not is_key_image_type(image_type):
            return None

        store_url = (store_overrides or {}).get(image_type)
        if store_url:
            name = store_url.rsplit("/", 1)[-1].split("?", 1)[0]
            return BackgroundTemplateResult(template_url=store_url, template_name=name, image_type=image_type)

        name = self.template_name(image_type)
        return BackgroundTemplateResult(
            template_url=self.template_url(name),
            template_name=name,
            image_type=image_type,
        )

    def with_template_mapping(self, image_type: ImageType, template_name: str) -> "BackgroundTemplateService":
        """New selector with one type remapped; rejects gallery types."""
        logger.info("Remapping background template for %s to %s", image_type, template_name)
        return BackgroundTemplateService(
            self.config.with_override(image_type, template_name), self._base
        )

    def available_templates(self) -> List[Dict[str, object]]:
        grouped: Dict[str, List[ImageType]] = {}
        for image_type in KEY_IMAGE_TYPES:
            grouped.setdefault(self.template_name(image_type), []).append(image_type)
        return [
            {"templateName": name, "imageTypes": [t.value for t in types]}
            for name, types in grouped.items()
        ]
