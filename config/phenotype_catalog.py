"""Seed phenotype catalog with geographic regions.

Reference embeddings and measurements are attached later from curated
reference images; the seed only carries labels, regions and a paternal
haplogroup hint used for display colours.
"""

PHENOTYPE_CATALOG = [
    # European
    {"id": "nordid", "name": "Nordid", "regions": ["Northern Europe", "Scandinavia", "Baltic"],
     "metadata": {"haplogroup": "I1"}},
    {"id": "mediterranid", "name": "Mediterranid", "regions": ["Southern Europe", "Mediterranean coast"],
     "metadata": {"haplogroup": "J2"}},
    {"id": "alpinid", "name": "Alpinid", "regions": ["Central Europe", "Alps"],
     "metadata": {"haplogroup": "R1b"}},
    {"id": "dinarid", "name": "Dinarid", "regions": ["Southeastern Europe", "Balkans"],
     "metadata": {"haplogroup": "I2a"}},
    {"id": "easteuropid", "name": "EastEuropid", "regions": ["Eastern Europe", "Slavic regions"],
     "metadata": {"haplogroup": "R1a"}},
    {"id": "atlantid", "name": "Atlantid", "regions": ["Western Europe", "Atlantic coast"],
     "metadata": {"haplogroup": "R1b-L21"}},

    # East Asian
    {"id": "sinid", "name": "Sinid", "regions": ["East Asia", "China", "Korea", "Japan"],
     "metadata": {"haplogroup": "O2"}},
    {"id": "southmongolid", "name": "SouthMongolid", "regions": ["Southeast Asia", "Vietnam", "Thailand"],
     "metadata": {"haplogroup": "O1b"}},
    {"id": "tungid", "name": "Tungid", "regions": ["Northeast Asia", "Manchuria", "Mongolia"],
     "metadata": {"haplogroup": "C2"}},
    {"id": "sibirid", "name": "Sibirid", "regions": ["Siberia", "Central Asia"],
     "metadata": {"haplogroup": "N1c"}},

    # South Asian
    {"id": "indid", "name": "Indid", "regions": ["South Asia", "India", "Pakistan"],
     "metadata": {"haplogroup": "R1a-Z93"}},
    {"id": "veddid", "name": "Veddid", "regions": ["South India", "Sri Lanka"],
     "metadata": {"haplogroup": "H1"}},
    {"id": "indomelanid", "name": "IndoMelanid", "regions": ["Eastern India", "Bangladesh"],
     "metadata": {"haplogroup": "L1"}},

    # Middle Eastern / North African
    {"id": "orientalid", "name": "Orientalid", "regions": ["Middle East", "Levant", "Arabia"],
     "metadata": {"haplogroup": "J1"}},
    {"id": "armenoid", "name": "Armenoid", "regions": ["Caucasus", "Eastern Anatolia"],
     "metadata": {"haplogroup": "G2a"}},
    {"id": "arabid", "name": "Arabid", "regions": ["Arabian Peninsula"],
     "metadata": {"haplogroup": "J-M267"}},
    {"id": "berberid", "name": "Berberid", "regions": ["North Africa", "Maghreb"],
     "metadata": {"haplogroup": "E-M81"}},

    # Sub-Saharan African
    {"id": "ethiopid", "name": "Ethiopid", "regions": ["East Africa", "Horn of Africa"],
     "metadata": {"haplogroup": "E-V32"}},
    {"id": "nilotid", "name": "Nilotid", "regions": ["East Africa", "Nile Valley"],
     "metadata": {"haplogroup": "A1"}},
    {"id": "congolid", "name": "Congolid", "regions": ["Central Africa", "Congo Basin"],
     "metadata": {"haplogroup": "E1b1a"}},
    {"id": "bantuid", "name": "Bantuid", "regions": ["Southern Africa", "Eastern Africa"],
     "metadata": {"haplogroup": "E1b1a1"}},
    {"id": "sudanid", "name": "Sudanid", "regions": ["West Africa", "Sahel"],
     "metadata": {"haplogroup": "E1b1a"}},
    {"id": "khoid", "name": "Khoid", "regions": ["Southern Africa", "Khoisan"],
     "metadata": {"haplogroup": "A0"}},

    # Southeast Asian / Pacific
    {"id": "malayid", "name": "Malayid", "regions": ["Southeast Asia", "Malaysia", "Indonesia"],
     "metadata": {"haplogroup": "O1a"}},
    {"id": "polynesid", "name": "Polynesid", "regions": ["Polynesia", "Pacific Islands"],
     "metadata": {"haplogroup": "C-M208"}},
    {"id": "melanesid", "name": "Melanesid", "regions": ["Melanesia", "Papua", "Solomon Islands"],
     "metadata": {"haplogroup": "M"}},
    {"id": "australid", "name": "Australid", "regions": ["Australia"],
     "metadata": {"haplogroup": "C1"}},

    # Native American
    {"id": "amazonid", "name": "Amazonid", "regions": ["South America", "Amazon Basin"],
     "metadata": {"haplogroup": "Q-M3"}},
    {"id": "andid", "name": "Andid", "regions": ["South America", "Andes"],
     "metadata": {"haplogroup": "Q1a2a"}},
    {"id": "centralid", "name": "Centralid", "regions": ["Central America"],
     "metadata": {"haplogroup": "Q-M3"}},
    {"id": "silvid", "name": "Silvid", "regions": ["North America", "Eastern Woodlands"],
     "metadata": {"haplogroup": "Q1a"}},

    # Other
    {"id": "ainuid", "name": "Ainuid", "regions": ["Japan", "Hokkaido"],
     "metadata": {"haplogroup": "D1a"}},
    {"id": "lappid", "name": "Lappid", "regions": ["Northern Scandinavia", "Sapmi"],
     "metadata": {"haplogroup": "N1c1"}},
    {"id": "eskimid", "name": "Eskimid", "regions": ["Arctic", "Greenland", "Alaska"],
     "metadata": {"haplogroup": "Q1b"}},
    {"id": "turanid", "name": "Turanid", "regions": ["Central Asia", "Turkic peoples"],
     "metadata": {"haplogroup": "R1a-Z93"}},
]

CATALOG_VERSION = "catalog-v1"
