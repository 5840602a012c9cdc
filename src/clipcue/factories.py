"""Category clip factories.

ClipFactories binds one EffectBank per category and hands out clips:

    factories = ClipFactories({"Entrance": {"fade-in": fade_in_generator}})
    clip = factories.entrance(box, "fade-in", config={"duration": 300})

Effect names are looked up in the category's bank; unknown names raise
RangeError listing the names the bank does hold. ConnectorSetter clips
need no bank, they only move connector endpoints.
"""

from collections.abc import Mapping

from .categories import Category
from .clip import Clip
from .effects import ComposedEffect, EffectBank, EffectGenerator
from .errors import RangeError


SET_POINTS_EFFECT = "~set-line-points"
VALID_TRACKING = ("on", "off", "preserve")


def _no_frames(ctx, *options):
    return ComposedEffect(forward_keyframes=list)


SET_POINTS_GENERATOR = EffectGenerator(compose_effect=_no_frames)


class ClipFactories:
    """Builds clips of every category from per-category effect banks."""

    def __init__(self, banks: Mapping | None = None, *, strict: bool = False, clock=None):
        self.strict = strict
        self.clock = clock
        self.banks: dict[Category, EffectBank] = {category: EffectBank() for category in Category}
        for key, bank in (banks or {}).items():
            self.banks[Category.parse(key)] = EffectBank(bank)

    def add_bank(self, category, bank: Mapping) -> None:
        """Merge more generators into a category's bank."""
        category = Category.parse(category)
        self.banks[category] = self.banks[category].merged(bank)

    def generator(self, category, effect_name: str) -> EffectGenerator:
        category = Category.parse(category)
        bank = self.banks[category]
        if effect_name not in bank:
            raise RangeError(
                f"Invalid effect name '{effect_name}' for {category.value}. "
                f"Valid: {sorted(bank)}"
            )
        return bank[effect_name]

    def create(self, category, target, effect_name: str, *effect_options, config=None) -> Clip:
        category = Category.parse(category)
        return Clip(
            category,
            target,
            effect_name,
            self.generator(category, effect_name),
            effect_options,
            config,
            strict=self.strict,
            clock=self.clock,
        )

    def entrance(self, target, effect_name, *effect_options, config=None) -> Clip:
        return self.create(Category.ENTRANCE, target, effect_name, *effect_options, config=config)

    def exit(self, target, effect_name, *effect_options, config=None) -> Clip:
        return self.create(Category.EXIT, target, effect_name, *effect_options, config=config)

    def emphasis(self, target, effect_name, *effect_options, config=None) -> Clip:
        return self.create(Category.EMPHASIS, target, effect_name, *effect_options, config=config)

    def motion(self, target, effect_name, *effect_options, config=None) -> Clip:
        return self.create(Category.MOTION, target, effect_name, *effect_options, config=config)

    def transition(self, target, effect_name, *effect_options, config=None) -> Clip:
        return self.create(Category.TRANSITION, target, effect_name, *effect_options, config=config)

    def scroller(self, target, effect_name, *effect_options, config=None) -> Clip:
        return self.create(Category.SCROLLER, target, effect_name, *effect_options, config=config)

    def connector_entrance(self, connector, effect_name, *effect_options, config=None) -> Clip:
        return self.create(
            Category.CONNECTOR_ENTRANCE, connector, effect_name, *effect_options, config=config
        )

    def connector_exit(self, connector, effect_name, *effect_options, config=None) -> Clip:
        return self.create(
            Category.CONNECTOR_EXIT, connector, effect_name, *effect_options, config=config
        )

    def connector_setter(
        self,
        connector,
        point_a,
        point_b,
        tracking: str = "preserve",
        config=None,
    ) -> Clip:
        """Clip that moves a connector's endpoints (and tracking flag).

        Either point may be 'preserve' to keep the connector's current one.
        """
        if tracking not in VALID_TRACKING:
            raise RangeError(f"Invalid tracking '{tracking}'. Valid: {list(VALID_TRACKING)}")
        clip = Clip(
            Category.CONNECTOR_SETTER,
            connector,
            SET_POINTS_EFFECT,
            SET_POINTS_GENERATOR,
            (),
            config,
            strict=self.strict,
            clock=self.clock,
        )
        clip.bookkeeping["points"] = (point_a, point_b)
        clip.bookkeeping["tracking"] = tracking
        return clip
