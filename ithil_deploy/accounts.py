"""Well known addresses for devnet funding."""

#: Ithil deployer wallet
DEPLOYER = "0x7778f7b568023379697451da178326D27682ADb8"

#: Wallets that seed the vaults with liquidity
DEPOSITORS = [
    "0xed7E824e52858de72208c5b9834c18273Ebb9D3b",
    "0x7Ce7DdE0b26a4ABe2fBBCF5c0ff9785dbFB9A72c",
]

#: Public faucet wallet
FAUCET = "0xabcdBC2EcB47642Ee8cf52fD7B88Fa42FBb69f98"

#: Default recipients of the Tenderly faucet
FAUCET_LIST = [DEPLOYER, *DEPOSITORS, FAUCET]

#: Accounts of the ``test test ... junk`` mnemonic, unlocked on Anvil and Hardhat node
TEST_ACCOUNTS = [
    "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266",
    "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
    "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC",
    "0x90F79bf6EB2c4f870365E785982E1f101E93b906",
    "0x15d34AAf54267DB7D7c367839AAf71A00a2C6A65",
    "0x9965507D1a55bcC2695C58ba16FB37d819B0A4dc",
    "0x976EA74026E726554dB657fA54763abd0C3a0aa9",
    "0x14dC79964da2C08b23698B3D3cc7Ca32193d9955",
    "0x23618e81E3f5cdF7f54C3d65f7FBc0aBf5B21E8f",
    "0xa0Ee7A142d267C1f36714E4a8F75612F20a79720",
    "0xBcd4042DE499D14e55001CcbB24a551F3b954096",
]

#: Arbitrum standard ERC-20 gateway, minter of bridged USDC and USDT
ARBITRUM_GATEWAY = "0x096760F208390250649E3e8763348E783AEF5562"

#: Arbitrum gateway minting bridged WBTC
ARBITRUM_BTC_GATEWAY = "0x09e9222E96E7B4AE2a407B98d48e330053351EEe"

#: Token symbol -> gateway allowed to ``bridgeMint``
BRIDGE_GATEWAYS = {
    "USDC": ARBITRUM_GATEWAY,
    "USDT": ARBITRUM_GATEWAY,
    "WBTC": ARBITRUM_BTC_GATEWAY,
}
