"""ZK Vault Meta information.
   ZK Vault keeps a user's credentials encrypted on the user's device
   under a key derived from a password that never leaves it.
"""
__title__ = 'zk_vault'
__description__ = (
   'Zero-knowledge vault core: key derivation, envelope encryption, '
   'secret custody and a hash-chained audit log.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
