"""Fake provider implementing node pools only.

Example:
    from kubestack.providers.fake import Fake, FakeCloud

    cloud = FakeCloud.create(Fake(state_file="/tmp/pools.json"))
"""

from kubestack.providers.fake.provider import STATE_FILE_ENV, Fake, FakeCloud

__all__ = ["STATE_FILE_ENV", "Fake", "FakeCloud"]
