from setuptools import setup

package_name = 'multibody'

setup(
    name=package_name,
    version='0.1.0',
    packages=[package_name],
    package_dir={package_name: 'src'},
    python_requires='>=3.9',
    install_requires=['setuptools', 'numpy', 'scipy', 'pymlg', 'tyro'],
    zip_safe=True,
    maintainer='root',
    maintainer_email='franche1984@gmail.com',
    description='Articulated rigid-body dynamics with constraints and mobilizer reaction forces',
    license='MIT',
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'multibody_verify = multibody.verification:entry_point',
        ],
    },
)
