#!/usr/bin/env python3
"""
Example: Issuing, redeeming and revoking cheques

This example walks a payer and a payee through the full cheque lifecycle
against a local settlement engine, using throwaway wallet keys.
"""

import os
import sys

# Add the cheque bank module to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from eth_account import Account

from cheque_bank.address import Address
from cheque_bank.config import ChequeBankConfig
from cheque_bank.cheques import Cheque, ChequeInfo
from cheque_bank.engine import ChequeBank
from cheque_bank.errors import ChequeBankError
from cheque_bank.logging_config import setup_logging
from cheque_bank.signatures import sign_cheque
from cheque_bank.storage import InMemoryStorage, SQLiteStorage


def main():
    print("Cheque Bank - Cheque Lifecycle Example")
    print("=" * 60)

    # 1. Configuration
    print("\n1. Configuration Setup")
    config = ChequeBankConfig()
    setup_logging(config.log_level, log_format="text")
    print(f"   Settlement identity: {config.bank_address}")
    print(f"   Storage backend: {config.storage_backend}")

    # 2. Storage Backend Selection
    print("\n2. Storage Backend Selection")
    if config.storage_backend == "sqlite":
        storage = SQLiteStorage(config.database_path)
        print(f"   Using SQLite at {config.database_path}")
    else:
        storage = InMemoryStorage()
        print("   Using InMemory backend")

    bank = ChequeBank(storage, config.bank_address)

    # 3. Wallets
    print("\n3. Wallets")
    payer_account = Account.create()
    payee_account = Account.create()
    payer = Address(payer_account.address)
    payee = Address(payee_account.address)
    print(f"   Payer: {payer}")
    print(f"   Payee: {payee}")

    try:
        # 4. Funding
        print("\n4. Funding the payer")
        balance = bank.deposit(payer, 20000)
        print(f"   Payer balance: {balance}")

        # 5. Off-line signing and issuance
        print("\n5. Signing a cheque for 1000 units")
        info = ChequeInfo(cheque_id=os.urandom(32), payer=payer, payee=payee, amount=1000)
        signature = sign_cheque(info, bank.bank_address, payer_account.key)
        bank.issue_cheque(Cheque(info, signature))
        print(f"   Cheque {info.cheque_id_hex[:18]}... issued")
        print(f"   Valid for payee: {bank.is_cheque_valid(payee, info.cheque_id)}")

        # 6. Redemption
        print("\n6. Payee redeems")
        redemption = bank.redeem(payee, info)
        print(f"   Payer balance: {redemption.payer_balance}")
        print(f"   Payee balance: {redemption.payee_balance}")
        print(f"   Still redeemable: {bank.redeemable_cheques(info.cheque_id)}")

        # 7. Revocation
        print("\n7. Payer revokes a second cheque")
        second = ChequeInfo(cheque_id=os.urandom(32), payer=payer, payee=payee, amount=500)
        bank.issue_cheque(Cheque(second, sign_cheque(second, bank.bank_address, payer_account.key)))
        bank.revoke(payer, second.cheque_id)
        try:
            bank.redeem(payee, second)
        except ChequeBankError as e:
            print(f"   Redeem after revoke rejected: {e.reason}")

        # 8. Withdrawal
        print("\n8. Payee withdraws")
        print(f"   Payee balance: {bank.withdraw(payee, 1000)}")

        # 9. Integrity
        print("\n9. Integrity Check")
        result = bank.verify_integrity()
        print(f"   Solvent: {result['solvency']['valid']}")
        print(f"   Audit chain valid: {result['audit']['valid']} ({result['audit']['total_events']} events)")

    finally:
        storage.close()

    print("\nDone.")


if __name__ == "__main__":
    main()
