"""Face gallery building blocks (gallery/matcher/engine/store).

Modules are imported directly (`from stellar_eyes.face.gallery import FaceGallery`);
nothing is re-exported here so that `stellar_eyes.utils` can depend on
`stellar_eyes.face.models` without import cycles.
"""
