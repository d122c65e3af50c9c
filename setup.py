from setuptools import setup

version = '0.1'

with open("README.md", "r", encoding="utf-8") as f:
    long_descr = f.read()

setup(
    name='pymxdcp',
    packages=['pymxdcp'],
    version=version,
    license='Apache 2.0',
    description='List and recall presets on Tascam MX-DCP series mixers',
    long_description=long_descr,
    long_description_content_type='text/markdown',
    author='johnno',
    author_email='johnno@example.com',
    url='https://github.com/johnno/pymxdcp',
    download_url=f'https://github.com/johnno/pymxdcp/archive/{version}.tar.gz',
    keywords=['Tascam', 'MX-DCP', 'Mixer', 'Presets'],
    python_requires='>=3.10',
    install_requires=[
        "python-dotenv>=1.0",
    ],
    extras_require={
        'test': [
            "pytest>=7.0",
            "pytest-asyncio>=0.23",
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Multimedia :: Sound/Audio :: Mixers',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3.10'
    ],
)
