# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Engine facade: validation, session startup, non-streaming generation."""
