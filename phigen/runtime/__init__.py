# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""One-time process setup: environment checks, seeding, logger init."""
