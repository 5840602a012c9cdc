"""clipcue: reversible, awaitable animation playback.

Compose effects into clips, schedule clips into sequences, and step
sequences along a timeline. Every forward play has an exact inverse
(rewind), and playback can be paused, fast-forwarded or held at
roadblocks. Scenes can be declared in YAML manifests.
"""
